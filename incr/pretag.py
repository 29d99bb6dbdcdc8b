"""Pretagging: a resumable background pass that materializes effective
priorities and due dates for every tracked node.

The pass walks ids in sorted order, in fixed-size chunks. After each chunk
it checkpoints the last id into the store, reports progress, and yields.
Cancellation is honoured only at chunk boundaries; a cancelled pass leaves
its checkpoint behind, and the next run resumes after it. A completed pass
clears the checkpoint so the next run starts from the beginning.

States: idle -> running -> completed | cancelled | failed.
"""

import sys
import threading
import time
from typing import Callable

from incr.config import Config
from incr.errors import CyclicHierarchy, StoreError
from incr.intervals import IntervalScheduler
from incr.models import PretagSummary
from incr.propagation import PriorityResolver
from incr.store import PriorityStore

IDLE = "idle"
RUNNING = "running"
COMPLETED = "completed"
CANCELLED = "cancelled"
FAILED = "failed"


class PretaggingWorker:
    def __init__(self, store: PriorityStore, resolver: PriorityResolver,
                 scheduler: IntervalScheduler, config: Config,
                 on_chunk: Callable[[dict], None] | None = None):
        self.store = store
        self.resolver = resolver
        self.scheduler = scheduler
        self.config = config
        self.on_chunk = on_chunk
        self.state = IDLE
        self.error: BaseException | None = None
        self.processed = 0
        self.total = 0
        self.skipped: list[str] = []
        self.last_id: str | None = None
        self._cancel = threading.Event()
        self._done = threading.Event()
        self._state_lock = threading.Lock()
        self._thread: threading.Thread | None = None

    def start(self) -> "PretagHandle":
        """Run the pass on a daemon thread and return a handle to it."""
        self._begin()
        self._thread = threading.Thread(target=self._run_in_thread, daemon=True,
                                        name="incr-pretag")
        self._thread.start()
        return PretagHandle(self)

    def run(self) -> PretagSummary:
        """Run the pass in the calling thread."""
        self._begin()
        return self._walk()

    def cancel(self):
        self._cancel.set()

    def progress(self) -> dict:
        return {
            "state": self.state,
            "processed": self.processed,
            "total": self.total,
            "skipped": list(self.skipped),
            "last_id": self.last_id,
        }

    def summary(self) -> PretagSummary:
        return PretagSummary(state=self.state, processed=self.processed,
                             skipped=list(self.skipped), last_id=self.last_id)

    def _begin(self):
        with self._state_lock:
            if self.state == RUNNING:
                raise ValueError("Pretagging is already running")
            self.state = RUNNING
        self.error = None
        self.processed = 0
        self.total = 0
        self.skipped = []
        self.last_id = None
        self._cancel.clear()
        self._done.clear()

    def _run_in_thread(self):
        try:
            self._walk()
        except Exception as e:
            print(f"Warning: pretagging stopped: {e}", file=sys.stderr)

    def _walk(self) -> PretagSummary:
        try:
            resume_after = self.store.get_checkpoint()
            ids = self.store.node_ids()
            if resume_after is not None:
                ids = [i for i in ids if i > resume_after]
            self.total = len(ids)
            size = self.config.pretag_chunk_size

            for start in range(0, len(ids), size):
                if self._cancel.is_set():
                    self.state = CANCELLED
                    break
                chunk = ids[start:start + size]
                self._process_chunk(chunk)
                self.store.set_checkpoint(chunk[-1])
                self.last_id = chunk[-1]
                if self.on_chunk:
                    self.on_chunk(self.progress())
                time.sleep(self.config.pretag_yield_seconds)
            else:
                self.store.set_checkpoint(None)
                self.state = COMPLETED
        except Exception as e:
            self.state = FAILED
            self.error = e
            raise
        finally:
            self._done.set()

        if self.skipped:
            print(f"Warning: pretagging skipped {len(self.skipped)} node(s): "
                  f"{', '.join(self.skipped)}", file=sys.stderr)
        return self.summary()

    def _process_chunk(self, chunk: list[str]):
        for node_id in chunk:
            try:
                with self.store.lock(node_id):
                    if node_id not in self.store:
                        continue  # untracked since the walk began
                    self.resolver.resolve(node_id, strict=True)
                    self._materialize_due(node_id)
            except CyclicHierarchy as e:
                print(f"Warning: {e}", file=sys.stderr)
                self.skipped.append(node_id)
            except StoreError:
                raise
            except Exception as e:
                print(f"Warning: pretagging node {node_id} failed: {e}", file=sys.stderr)
                self.skipped.append(node_id)
            self.processed += 1

    def _materialize_due(self, node_id: str):
        state = self.store.peek(node_id)
        if state.next_due_at is None and state.history:
            self.store.upsert_due_at(node_id, self.scheduler.due_from_history(state.history))


class PretagHandle:
    """Caller-side view of a pass started with PretaggingWorker.start()."""

    def __init__(self, worker: PretaggingWorker):
        self._worker = worker

    @property
    def state(self) -> str:
        return self._worker.state

    def cancel(self):
        self._worker.cancel()

    def progress(self) -> dict:
        return self._worker.progress()

    def wait(self, timeout: float | None = None) -> PretagSummary | None:
        """Block until the pass ends. Re-raises a fatal store error."""
        if not self._worker._done.wait(timeout):
            return None
        if self._worker.error is not None:
            raise self._worker.error
        return self._worker.summary()
