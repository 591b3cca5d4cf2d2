"""Parsing of user-written routing rules."""

from __future__ import annotations

import ipaddress
import re
from typing import Callable, Iterable, Optional, Union

from .types import CompiledRule, InvalidRule, ParseResult, RuleType

Interface = Union[ipaddress.IPv4Interface, ipaddress.IPv6Interface]

_DOMAIN_PATTERN = re.compile(r"[a-z0-9][a-z0-9.-]*[a-z0-9]")
_SUFFIX_PATTERN = re.compile(r"[a-z0-9][a-z0-9.-]*")


def parse_lines(lines: Iterable[str]) -> ParseResult:
    """Parse rule lines, skipping blanks and ``#`` comments."""
    result = ParseResult()
    summary = result.summary
    for number, raw in enumerate(lines, start=1):
        summary.total += 1
        trimmed = raw.strip()
        if not trimmed or trimmed.startswith("#"):
            continue

        try:
            rule = parse_rule(trimmed)
        except ValueError as exc:
            result.invalid.append(InvalidRule(line=number, input=raw, reason=str(exc)))
            summary.invalid += 1
            continue

        result.compiled.append(rule)
        result.valid.append(rule.original)
        summary.valid += 1
        if rule.type is RuleType.DOMAIN_SUFFIX:
            summary.domain_suffix += 1
        elif rule.type is RuleType.DOMAIN_EXACT:
            summary.domain_exact += 1
        elif rule.type is RuleType.DOMAIN_KEYWORD:
            summary.domain_keyword += 1
        elif rule.type is RuleType.IP_CIDR:
            summary.cidr += 1
    return result


def parse_rule(text: str) -> CompiledRule:
    """Compile one rule; raise ValueError with the reason when it is invalid."""
    normalized = text.strip().removesuffix(".").lower()
    if not normalized:
        raise ValueError("空规则")

    if "," in normalized:
        kind, value = (part.strip() for part in normalized.split(",", 1))
        builder = _PREFIXED_BUILDERS.get(kind)
        if builder is not None:
            return builder(text, value)

    if _parse_prefix(normalized) is not None:
        return _cidr_rule(text, normalized)
    if normalized.startswith("."):
        return _suffix_rule(text, normalized[1:])
    if "." in normalized:
        return _exact_rule(text, normalized)
    return _keyword_rule(text, normalized)


def _suffix_rule(original: str, value: str) -> CompiledRule:
    if not _SUFFIX_PATTERN.fullmatch(value):
        raise ValueError("无效的域名后缀")
    return CompiledRule(
        type=RuleType.DOMAIN_SUFFIX,
        original=original.strip(),
        normalized=value.lower().removeprefix("."),
    )


def _exact_rule(original: str, value: str) -> CompiledRule:
    if not (_DOMAIN_PATTERN.fullmatch(value) and "." in value):
        raise ValueError("无效的完整域名")
    return CompiledRule(
        type=RuleType.DOMAIN_EXACT,
        original=original.strip(),
        normalized=value.lower(),
    )


def _keyword_rule(original: str, value: str) -> CompiledRule:
    if not value.strip():
        raise ValueError("无效的关键词规则")
    return CompiledRule(
        type=RuleType.DOMAIN_KEYWORD,
        original=original.strip(),
        normalized=value.lower(),
    )


def _cidr_rule(original: str, value: str) -> CompiledRule:
    interface = _parse_prefix(value)
    if interface is None:
        raise ValueError("无效的 CIDR 规则")
    return CompiledRule(
        type=RuleType.IP_CIDR,
        original=original.strip(),
        normalized=str(interface),
        prefix=interface.network,
    )


def _parse_prefix(value: str) -> Optional[Interface]:
    """Parse ``addr/bits`` strictly; host bits are kept in the result."""
    address, sep, bits = value.partition("/")
    if not sep or not bits.isascii() or not bits.isdigit():
        return None
    if len(bits) > 1 and bits.startswith("0"):
        return None
    if "%" in address:
        return None
    try:
        return ipaddress.ip_interface(value)
    except ValueError:
        return None


_PREFIXED_BUILDERS: dict[str, Callable[[str, str], CompiledRule]] = {
    "domain-suffix": _suffix_rule,
    "domain-keyword": _keyword_rule,
    "ip-cidr": _cidr_rule,
    "domain": _exact_rule,
}