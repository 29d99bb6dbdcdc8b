"""Due-set ranking: which nodes are due at a given time, most urgent first.

Order: effective priority ascending, then next_due_at ascending, then id.
The ranker keeps an index of due dates refreshed from the store's dirty
set, so a query only re-reads nodes mutated since the previous one.
"""

import heapq
import threading
from datetime import datetime

from incr.config import Config
from incr.errors import NotFound
from incr.propagation import PriorityResolver
from incr.store import PriorityStore, utcnow


class DueSet:
    """A ranked snapshot of due nodes.

    Iteration is lazy (a heap is popped as the caller consumes ids) and
    can be restarted any number of times; later store mutations are not
    seen by an existing DueSet.
    """

    def __init__(self, keys: list[tuple[int, datetime, str]]):
        self._keys = keys

    def __iter__(self):
        heap = list(self._keys)
        heapq.heapify(heap)
        while heap:
            yield heapq.heappop(heap)[2]

    def __len__(self) -> int:
        return len(self._keys)

    def __bool__(self) -> bool:
        return bool(self._keys)

    def top(self, k: int) -> list[str]:
        return [key[2] for key in heapq.nsmallest(k, self._keys)]

    def ranked(self) -> list[tuple[str, int, datetime]]:
        """(id, effective_priority, next_due_at) in rank order."""
        return [(i, p, due) for p, due, i in sorted(self._keys)]


class DueSetRanker:
    def __init__(self, store: PriorityStore, resolver: PriorityResolver, config: Config):
        self.store = store
        self.resolver = resolver
        self.config = config
        self._due: dict[str, tuple[datetime, str]] = {}
        self._primed = False
        self._lock = threading.Lock()

    def due_set(self, now: datetime | None = None, kind: str | None = None) -> DueSet:
        now = now or utcnow()
        with self._lock:
            self._refresh()
            candidates = [(i, due) for i, (due, k) in self._due.items()
                          if due <= now and (kind is None or k == kind)]
        keys = []
        for node_id, due in candidates:
            try:
                keys.append((self.resolver.effective(node_id), due, node_id))
            except NotFound:
                continue  # untracked while ranking
        return DueSet(keys)

    def shield(self, now: datetime | None = None, k: int | None = None,
               kind: str | None = None) -> list[str]:
        """The top-k most urgent due ids."""
        if k is None:
            k = self.config.shield_top_k
        return self.due_set(now, kind).top(k)

    def relative_priority(self, node_id: str) -> float:
        """Percent of same-kind nodes strictly more urgent than node_id.

        0 means nothing outranks it; values approach 100 for the least
        urgent node in a large corpus.
        """
        state = self.store.peek(node_id)
        if state is None:
            raise NotFound(f"Unknown node: {node_id}", node_id)
        mine = self.resolver.effective(node_id)
        peers = 0
        ahead = 0
        for other in self.store.node_ids():
            peer = self.store.peek(other)
            if peer is None or peer.kind != state.kind:
                continue
            try:
                theirs = self.resolver.effective(other)
            except NotFound:
                continue
            peers += 1
            if theirs < mine:
                ahead += 1
        return round(100.0 * ahead / peers, 1)

    def _refresh(self):
        dirty = self.store.take_dirty()
        if not self._primed:
            dirty.update(self.store.node_ids())
            self._primed = True
        for node_id in dirty:
            state = self.store.peek(node_id)
            if state is None or state.next_due_at is None:
                self._due.pop(node_id, None)
            else:
                self._due[node_id] = (state.next_due_at, state.kind)
