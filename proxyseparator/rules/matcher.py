"""Route matching of destinations against compiled rules."""

from __future__ import annotations

import ipaddress
from typing import Iterable, Optional, Union

from .trie import SuffixTrie
from .types import CompiledRule, MatchResult, RouteTarget, RuleType

Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_PRIVATE_V4 = tuple(
    ipaddress.ip_network(net) for net in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16")
)
_PRIVATE_V6 = ipaddress.ip_network("fc00::/7")
_LINK_LOCAL_MULTICAST_V4 = ipaddress.ip_network("224.0.0.0/24")

_DEFAULT_REASON = "未命中规则，走默认个人代理"


def is_local_or_private_address(addr: Address) -> bool:
    """True for loopback, private, link-local unicast and link-local multicast addresses."""
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    if isinstance(addr, ipaddress.IPv4Address):
        return (
            addr.is_loopback
            or any(addr in net for net in _PRIVATE_V4)
            or addr.is_link_local
            or addr in _LINK_LOCAL_MULTICAST_V4
        )
    return (
        addr.is_loopback
        or addr in _PRIVATE_V6
        or addr.is_link_local
        or (int(addr) >> 112) & 0xFF0F == 0xFF02
    )


def _split_host_port(value: str) -> Optional[tuple[str, str]]:
    """Split ``host:port`` or ``[host]:port``; None when the text is not of that form."""
    colon = value.rfind(":")
    if colon < 0:
        return None
    open_at, close_from = 0, 0
    if value.startswith("["):
        end = value.find("]")
        if end < 0 or end + 1 != colon:
            return None
        host = value[1:end]
        open_at, close_from = 1, end + 1
    else:
        host = value[:colon]
        if ":" in host:
            return None
    if "[" in value[open_at:] or "]" in value[close_from:]:
        return None
    return host, value[colon + 1 :]


def normalize_input(value: str) -> str:
    """Lower-case, trim and strip a trailing dot and any port from a destination."""
    text = value.lower().strip().removesuffix(".")
    if not text:
        return text
    split = _split_host_port(text)
    return split[0] if split is not None else text


def _parse_addr(text: str) -> Optional[Address]:
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None


class Matcher:
    """Decides the route target of destinations using compiled rules."""

    def __init__(self, compiled: Iterable[CompiledRule]) -> None:
        self._exact: dict[str, CompiledRule] = {}
        self._suffixes = SuffixTrie()
        self._keywords: list[CompiledRule] = []
        self._cidrs: list[CompiledRule] = []
        for rule in compiled:
            if rule.type is RuleType.DOMAIN_EXACT:
                self._exact[rule.normalized] = rule
            elif rule.type is RuleType.DOMAIN_SUFFIX:
                self._suffixes.insert(rule.normalized)
            elif rule.type is RuleType.DOMAIN_KEYWORD:
                self._keywords.append(rule)
            elif rule.type is RuleType.IP_CIDR:
                self._cidrs.append(rule)

    def match(self, target: str) -> MatchResult:
        """Return the routing decision for a host or ``host:port``."""
        normalized = normalize_input(target)
        if not normalized:
            return MatchResult(
                normalized, RouteTarget.PERSONAL, RuleType.DEFAULT, reason="空目标，走默认策略"
            )

        addr = _parse_addr(normalized)
        if addr is not None:
            return self._match_address(normalized, addr)

        exact = self._exact.get(normalized)
        if exact is not None:
            return MatchResult(
                normalized,
                RouteTarget.COMPANY,
                exact.type,
                exact.original,
                "命中完整域名规则",
            )
        suffix = self._suffixes.match(normalized)
        if suffix:
            return MatchResult(
                normalized,
                RouteTarget.COMPANY,
                RuleType.DOMAIN_SUFFIX,
                "." + suffix,
                "命中域名后缀规则",
            )
        for keyword in self._keywords:
            if keyword.normalized in normalized:
                return MatchResult(
                    normalized,
                    RouteTarget.COMPANY,
                    keyword.type,
                    keyword.original,
                    "命中域名关键词规则",
                )
        return MatchResult(normalized, RouteTarget.PERSONAL, RuleType.DEFAULT, reason=_DEFAULT_REASON)

    def _match_address(self, normalized: str, addr: Address) -> MatchResult:
        if is_local_or_private_address(addr):
            return MatchResult(
                normalized, RouteTarget.DIRECT, RuleType.LOCAL_IP, reason="本地或私有地址不代理"
            )
        for rule in self._cidrs:
            if rule.prefix is not None and addr in rule.prefix:
                return MatchResult(
                    normalized,
                    RouteTarget.COMPANY,
                    rule.type,
                    rule.original,
                    "命中 IP 段规则",
                )
        return MatchResult(normalized, RouteTarget.PERSONAL, RuleType.DEFAULT, reason=_DEFAULT_REASON)