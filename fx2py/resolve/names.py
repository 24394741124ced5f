"""Named-element registry and variable-name synthesis.

Ids are registered in a first top-down pass so that references resolve
regardless of where the referenced element appears in the document.
"""

from __future__ import annotations

import builtins
import keyword

from ..backend.util import to_identifier
from ..frontend.ast import Node, Pos

# Names the generated build() method uses for its own locals
RESERVED_NAMES: set[str] = {
    "self",
    "controller",
    "root",
    "resources",
    "controller_factory",
    "runtime",
}


class RegistryEntry:
    """An id, the node that declared it and the variable holding it."""

    def __init__(self, fx_id: str, node: Node, var: str):
        self.fx_id: str = fx_id
        self.node: Node = node
        self.var: str = var

    @property
    def pos(self) -> Pos:
        return self.node.pos

    def __repr__(self) -> str:
        return "RegistryEntry(" + self.fx_id + " -> " + self.var + ")"


class Registry:
    """Mapping from fx:id to the element that declared it."""

    def __init__(self) -> None:
        self.entries: dict[str, RegistryEntry] = {}

    def add(self, entry: RegistryEntry) -> None:
        self.entries[entry.fx_id] = entry

    def get(self, fx_id: str) -> RegistryEntry | None:
        return self.entries.get(fx_id)

    def __contains__(self, fx_id: str) -> bool:
        return fx_id in self.entries

    def ids(self) -> list[str]:
        return list(self.entries)


class Namer:
    """Hands out unique variable names for one generated build() body."""

    def __init__(self, reserved: set[str] | None = None):
        self.taken: set[str] = set(RESERVED_NAMES)
        if reserved is not None:
            self.taken.update(reserved)
        self.counters: dict[str, int] = {}

    def usable(self, name: str) -> bool:
        return (
            name.isidentifier()
            and not keyword.iskeyword(name)
            and not hasattr(builtins, name)
            and name not in self.taken
        )

    def claim(self, name: str) -> bool:
        """Take name as-is if it is free."""
        if not self.usable(name):
            return False
        self.taken.add(name)
        return True

    def fresh(self, hint: str) -> str:
        """A new name derived from hint: label_1, label_2, ..."""
        base = to_identifier(hint)
        while True:
            n = self.counters.get(base, 0) + 1
            self.counters[base] = n
            name = base + "_" + str(n)
            if self.usable(name):
                self.taken.add(name)
                return name
