"""Route lists that must bypass the personal tunnel."""

from __future__ import annotations

from typing import Iterable

from ..rules.parser import parse_lines
from ..rules.types import RuleType


def company_bypass_cidrs(rules: Iterable[str]) -> list[str]:
    """Sorted, de-duplicated CIDR prefixes named by the company rules."""
    routes: set[str] = set()
    for compiled in parse_lines(rules).compiled:
        if compiled.type is not RuleType.IP_CIDR or not compiled.normalized:
            continue
        routes.add(compiled.normalized)
    return sorted(routes)


def merge_route_lists(*route_sets: Iterable[str]) -> list[str]:
    """Merge route lists into one sorted list without blanks or duplicates."""
    merged: set[str] = set()
    for routes in route_sets:
        for route in routes:
            route = route.strip()
            if route:
                merged.add(route)
    return sorted(merged)