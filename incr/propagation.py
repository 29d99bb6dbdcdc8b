"""Effective-priority resolution over the parent hierarchy.

A node's effective priority is its explicit priority, else that of the
nearest ancestor holding one, else the configured default for the node's
own kind. The walk is iterative over the id-indexed arena with a visited
set, so malformed (cyclic) parent chains terminate after at most
len(store) steps.
"""

import sys

from incr.config import Config
from incr.errors import CyclicHierarchy, NotFound
from incr.models import SOURCE_DEFAULT, SOURCE_INHERITED, SOURCE_MANUAL, Resolution
from incr.store import PriorityStore


class PriorityResolver:
    def __init__(self, store: PriorityStore, config: Config):
        self.store = store
        self.config = config

    def effective(self, node_id: str) -> int:
        return self.resolve(node_id).value

    def resolve(self, node_id: str, strict: bool = False) -> Resolution:
        """Resolve and memoize node_id's effective priority.

        Every node visited on the way up is memoized too. On a cyclic chain
        the kind defaults are cached and, with strict, CyclicHierarchy is
        raised; otherwise a warning is printed and the default returned.
        A node whose chain runs into a known cycle is treated the same way.
        """
        if self.store.peek(node_id) is None:
            raise NotFound(f"Unknown node: {node_id}", node_id)
        hit = self.store.cached(node_id)
        if hit is not None:
            if hit.cyclic and strict:
                self._report_cycle(node_id, strict)
            return hit

        # (id, generation, kind) for each node below the origin
        path: list[tuple[str, int, str]] = []
        visited: set[str] = set()
        bound = len(self.store) + 1
        origin: Resolution | None = None
        cyclic = False
        current = node_id

        while current is not None:
            node = self.store.peek(current)
            if node is None:
                break  # dangling parent behaves like a root
            if current in visited or len(visited) >= bound:
                cyclic = True
                break
            visited.add(current)
            gen = self.store.generation(current)
            if current != node_id:
                hit = self.store.cached(current)
                if hit is not None:
                    if hit.cyclic:
                        cyclic = True
                    elif hit.origin_id is not None:
                        origin = Resolution(hit.value, SOURCE_INHERITED, hit.origin_id)
                    break
            explicit = node.explicit_priority
            if explicit is not None:
                own = Resolution(explicit, SOURCE_MANUAL, current)
                self.store.cache_resolutions([(current, own, gen)])
                if current == node_id:
                    return own
                origin = Resolution(explicit, SOURCE_INHERITED, current)
                break
            path.append((current, gen, node.kind))
            current = node.parent_id

        if origin is not None:
            items = [(i, origin, gen) for i, gen, _kind in path]
        else:
            items = [(i, self._default(kind, cyclic), gen) for i, gen, kind in path]
        self.store.cache_resolutions(items)
        result = items[0][1]

        if cyclic:
            self._report_cycle(node_id, strict)
        return result

    def _report_cycle(self, node_id: str, strict: bool):
        kind = self.store.peek(node_id).kind
        msg = f"cyclic parent chain at node {node_id}; using the {kind} default"
        if strict:
            raise CyclicHierarchy(msg, node_id, self.store.get(node_id))
        print(f"Warning: {msg}", file=sys.stderr)

    def _default(self, kind: str, cyclic: bool = False) -> Resolution:
        return Resolution(self.config.default_priority(kind), SOURCE_DEFAULT, None, cyclic)
