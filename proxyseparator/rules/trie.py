"""Label-wise suffix trie for domain suffix rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class _Node:
    children: dict[str, "_Node"] = field(default_factory=dict)
    rule: str = ""


class SuffixTrie:
    """Trie keyed on reversed domain labels, returning the longest matching suffix."""

    def __init__(self) -> None:
        self._root = _Node()

    def insert(self, rule: str) -> None:
        """Register a domain suffix rule; empty rules are ignored."""
        if not rule:
            return
        node = self._root
        for label in reversed(rule.lower().split(".")):
            if not label:
                continue
            node = node.children.setdefault(label, _Node())
        node.rule = rule

    def match(self, domain: str) -> Optional[str]:
        """Return the longest registered suffix covering ``domain``, or None."""
        if not domain:
            return None
        node: Optional[_Node] = self._root
        matched: Optional[str] = None
        for label in reversed(domain.lower().split(".")):
            node = node.children.get(label) if node is not None else None
            if node is None:
                break
            if node.rule:
                matched = node.rule
        return matched