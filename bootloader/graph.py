"""
Dependency graph of wired modules, for diagnostics.

Built after injection from the fields that point at other registered
modules. Cycles are legal here (both instances already exist when fields are
assigned), so cycle detection is informational.
"""

from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple
from collections import defaultdict

from .fields import TagKind

if TYPE_CHECKING:
    from .registry import Registry


class DependencyGraph:
    """
    Module wiring graph.

    Nodes are module keys (registration name, else type path); an edge
    ``a -> b`` means a field of ``a`` holds module ``b``. Uses Tarjan's
    algorithm for cycle detection.
    """

    def __init__(self):
        self.adj_list: Dict[str, List[str]] = defaultdict(list)
        self.labels: Dict[str, str] = {}
        self.edge_fields: Dict[Tuple[str, str], str] = {}
        self._index_counter = 0
        self._stack: List[str] = []
        self._lowlinks: Dict[str, int] = {}
        self._index: Dict[str, int] = {}
        self._on_stack: Set[str] = set()
        self._sccs: List[List[str]] = []

    @classmethod
    def from_registry(cls, registry: "Registry") -> "DependencyGraph":
        graph = cls()
        modules = registry.list()
        by_identity = {id(m.instance): m for m in modules}
        keys = {id(m): _node_key(m, i) for i, m in enumerate(modules)}

        for m in modules:
            graph.add_node(keys[id(m)], m.path)

        for m in modules:
            # Declaration order reads better than the internal reverse order
            for f in reversed(m.fields):
                if not f.injected or f.kind == TagKind.PROPERTY:
                    continue
                target = by_identity.get(id(getattr(m.instance, f.name)))
                if target is not None:
                    graph.add_edge(keys[id(m)], keys[id(target)], f.name)
        return graph

    def add_node(self, key: str, label: Optional[str] = None) -> None:
        self.adj_list.setdefault(key, [])
        self.labels[key] = label or key

    def add_edge(self, source: str, target: str, field: Optional[str] = None) -> None:
        self.adj_list[source].append(target)
        self.adj_list.setdefault(target, [])
        if field:
            self.edge_fields[(source, target)] = field

    def dependencies(self, key: str) -> List[str]:
        return list(self.adj_list.get(key, []))

    def detect_cycles(self) -> List[List[str]]:
        """
        Detect cycles using Tarjan's algorithm.

        Returns:
            Strongly connected components that form cycles
        """
        self._index_counter = 0
        self._stack = []
        self._lowlinks = {}
        self._index = {}
        self._on_stack = set()
        self._sccs = []

        for key in list(self.adj_list):
            if key not in self._index:
                self._strongconnect(key)

        return [
            scc for scc in self._sccs
            if len(scc) > 1 or (len(scc) == 1 and scc[0] in self.adj_list[scc[0]])
        ]

    def _strongconnect(self, key: str) -> None:
        self._index[key] = self._index_counter
        self._lowlinks[key] = self._index_counter
        self._index_counter += 1
        self._stack.append(key)
        self._on_stack.add(key)

        for dep in self.adj_list.get(key, []):
            if dep not in self._index:
                self._strongconnect(dep)
                self._lowlinks[key] = min(self._lowlinks[key], self._lowlinks[dep])
            elif dep in self._on_stack:
                self._lowlinks[key] = min(self._lowlinks[key], self._index[dep])

        if self._lowlinks[key] == self._index[key]:
            scc = []
            while True:
                w = self._stack.pop()
                self._on_stack.remove(w)
                scc.append(w)
                if w == key:
                    break
            self._sccs.append(scc)

    def export_dot(self) -> str:
        """
        Export graph as Graphviz DOT format.

        Returns:
            DOT string
        """
        lines = ["digraph Modules {"]
        lines.append("  rankdir=LR;")
        lines.append("  node [shape=box];")

        for key, label in self.labels.items():
            if label != key:
                lines.append(f'  "{key}" [label="{key}\\n{label}"];')
            else:
                lines.append(f'  "{key}";')

        for key, deps in self.adj_list.items():
            for dep in deps:
                field = self.edge_fields.get((key, dep))
                attr = f' [label="{field}"]' if field else ""
                lines.append(f'  "{key}" -> "{dep}"{attr};')

        lines.append("}")
        return "\n".join(lines)

    def get_tree_view(self, root: Optional[str] = None) -> str:
        """
        Get tree view of dependencies.

        Args:
            root: Optional root key (if None, show all roots)
        """
        if root:
            return self._tree_view_recursive(root, "", set())

        all_deps = set()
        for deps in self.adj_list.values():
            all_deps.update(deps)

        roots = [k for k in self.adj_list if k not in all_deps]

        return "\n".join(self._tree_view_recursive(r, "", set()) for r in roots)

    def _tree_view_recursive(self, key: str, prefix: str, visited: Set[str]) -> str:
        if key in visited:
            return f"{prefix}├── {key} (circular)"
        if key not in self.adj_list:
            return f"{prefix}├── {key} (missing)"

        visited.add(key)
        lines = [f"{prefix}├── {key}"]

        deps = self.adj_list[key]
        for i, dep in enumerate(deps):
            is_last = i == len(deps) - 1
            new_prefix = prefix + ("    " if is_last else "│   ")
            lines.append(self._tree_view_recursive(dep, new_prefix, visited.copy()))

        return "\n".join(lines)


def _node_key(m, index: int) -> str:
    if m.name:
        return m.name
    return f"{m.path}#{index}"
