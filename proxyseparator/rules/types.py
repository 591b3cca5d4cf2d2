"""Data types shared by the rule parser and the route matcher."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class RuleType(str, Enum):
    """Kind of rule that produced a routing decision."""

    DOMAIN_SUFFIX = "domain_suffix"
    DOMAIN_EXACT = "domain_exact"
    DOMAIN_KEYWORD = "domain_keyword"
    IP_CIDR = "ip_cidr"
    LOCAL_IP = "local_ip"
    DEFAULT = "default"

    def __str__(self) -> str:
        return self.value


class RouteTarget(str, Enum):
    """Where a connection is sent."""

    COMPANY = "company"
    PERSONAL = "personal"
    DIRECT = "direct"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CompiledRule:
    """A validated rule ready for matching."""

    type: RuleType
    original: str
    normalized: str
    prefix: Optional[Network] = None


@dataclass(frozen=True)
class InvalidRule:
    """A rule line that failed validation."""

    line: int
    input: str
    reason: str


@dataclass
class Summary:
    """Counters collected while parsing rule lines."""

    total: int = 0
    valid: int = 0
    invalid: int = 0
    domain_suffix: int = 0
    domain_exact: int = 0
    domain_keyword: int = 0
    cidr: int = 0


@dataclass
class ParseResult:
    """Outcome of parsing a list of rule lines."""

    compiled: list[CompiledRule] = field(default_factory=list)
    valid: list[str] = field(default_factory=list)
    invalid: list[InvalidRule] = field(default_factory=list)
    summary: Summary = field(default_factory=Summary)


@dataclass(frozen=True)
class MatchResult:
    """Routing decision for one destination."""

    normalized: str
    target: RouteTarget
    rule_type: RuleType
    matched_rule: str = ""
    reason: str = ""