"""Resolution of company domains to real addresses with host bypass routes."""

from __future__ import annotations

import ipaddress
import logging
import sys
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Protocol, Union

import dns.exception
import dns.message
import dns.name
import dns.query
import dns.rcode
import dns.rdatatype

Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

COMPANY_FAKE_IP_PREFIXES = (ipaddress.ip_network("198.18.0.0/15"),)

_DEFAULT_TTL = 300.0
_QUERY_TIMEOUT = 5.0
_STALE_GRACE = 30.0
_LOOPBACK_RESOLVER = "127.0.0.1:53"

_log = logging.getLogger(__name__)


class BypassRouteController(Protocol):
    """The part of the platform controller that manages bypass host routes."""

    def apply_company_bypass_routes(self, iface: str, routes: list[str]) -> Any:
        ...

    def clear_company_bypass_routes(self, iface: str, routes: list[str]) -> Any:
        ...


@dataclass
class _ResolvedDomain:
    addresses: list[Address] = field(default_factory=list)
    routes: list[str] = field(default_factory=list)
    expires_at: float = 0.0


@dataclass(frozen=True)
class _DNSAnswer:
    addresses: list[Address]
    ttl: float
    resolver: str


def _split_host_port(addr: str) -> Optional[tuple[str, str]]:
    colon = addr.rfind(":")
    if colon < 0:
        return None
    if addr.startswith("["):
        end = addr.find("]")
        if end < 0 or end + 1 != colon:
            return None
        return addr[1:end], addr[colon + 1 :]
    host = addr[:colon]
    if ":" in host or "[" in host or "]" in host:
        return None
    return host, addr[colon + 1 :]


def _join_host_port(host: str, port: str) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _parse_addr(text: str) -> Optional[Address]:
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None


def split_dial_target(addr: str) -> tuple[str, str]:
    """Split ``host:port`` into trimmed host and port; raise ValueError otherwise."""
    split = _split_host_port(addr)
    if split is None:
        raise ValueError(f"address {addr}: missing port in address")
    host, port = split
    return host.strip(), port.strip()


def join_resolved_targets(addresses: Iterable[Address], port: str) -> list[str]:
    """Pair every address with ``port`` as dialable ``host:port`` strings."""
    return [_join_host_port(str(addr), port) for addr in addresses]


def prefixes_from_addrs(addresses: Iterable[Address]) -> list[str]:
    """Sorted, unique host prefixes (/32 or /128) for the given addresses."""
    prefixes = {
        f"{addr}/{128 if isinstance(addr, ipaddress.IPv6Address) else 32}" for addr in addresses
    }
    return sorted(prefixes)


def is_fake_company_addr(addr: Address) -> bool:
    """True for addresses from the fake-IP range used by tunnelling proxies."""
    return any(addr in prefix for prefix in COMPANY_FAKE_IP_PREFIXES)


def min_positive_ttl(current: float, next_ttl: float) -> float:
    """The smaller of two TTLs, ignoring values that are not positive."""
    if current <= 0:
        return next_ttl
    if next_ttl <= 0:
        return current
    return min(current, next_ttl)


def normalize_company_resolvers(resolvers: Iterable[str]) -> list[str]:
    """Trim, add the default port, append the loopback resolver and de-duplicate."""
    out: list[str] = []
    for resolver in [*resolvers, _LOOPBACK_RESOLVER]:
        resolver = resolver.strip()
        if not resolver:
            continue
        if _split_host_port(resolver) is None:
            resolver = _join_host_port(resolver, "53")
        if resolver not in out:
            out.append(resolver)
    return out


def _ipv4_of_interface(iface: str) -> Optional[str]:
    try:
        import fcntl
        import socket
        import struct
    except ImportError:
        return None
    request = 0xC0206921 if sys.platform == "darwin" else 0x8915
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            packed = struct.pack("256s", iface.encode()[:15])
            result = fcntl.ioctl(sock.fileno(), request, packed)
    except OSError:
        return None
    addr = ipaddress.IPv4Address(result[20:24])
    return None if addr.is_loopback else str(addr)


def _ipv6_of_interface(iface: str) -> Optional[str]:
    try:
        with open("/proc/net/if_inet6", encoding="ascii") as table:
            lines = table.readlines()
    except OSError:
        return None
    for line in lines:
        fields = line.split()
        if len(fields) < 6 or fields[5] != iface:
            continue
        try:
            addr = ipaddress.IPv6Address(int(fields[0], 16))
        except ValueError:
            continue
        if not addr.is_loopback:
            return str(addr)
    return None


def _resolver_source_address(iface: str, resolver: str) -> Optional[str]:
    """Local address on ``iface`` to send queries for ``resolver`` from, if any."""
    if not iface.strip():
        return None
    split = _split_host_port(resolver)
    host = split[0] if split is not None else resolver
    ip = _parse_addr(host)
    if ip is None or ip.is_loopback:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is None:
        return _ipv6_of_interface(iface)
    return _ipv4_of_interface(iface)


class CompanyDomainDialer:
    """Resolves company domains through real resolvers and keeps host bypass routes for them."""

    def __init__(
        self,
        platform: BypassRouteController,
        iface: str,
        resolvers: Iterable[str],
        snapshot_writer: Optional[Callable[[list[str]], None]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.platform = platform
        self.iface = iface.strip()
        self.resolvers = normalize_company_resolvers(resolvers)
        self.snapshot_writer = snapshot_writer
        self.logger = logger or _log
        self.refresh_lead = 5.0
        self._lock = threading.Lock()
        self._domains: dict[str, _ResolvedDomain] = {}
        self._route_refs: dict[str, int] = {}

    def prepare_dial_targets(self, addr: str) -> list[str]:
        """Return ``ip:port`` candidates for ``addr``, resolving domains and adding routes."""
        host, port = split_dial_target(addr)
        parsed = _parse_addr(host)
        if parsed is not None:
            return [_join_host_port(str(parsed), port)]

        targets = self._cached_targets(host, port, time.monotonic())
        if targets is not None:
            return targets

        try:
            answer = self._lookup_domain(host)
        except Exception as exc:
            targets = self._cached_targets(host, port, time.monotonic() + _STALE_GRACE)
            if targets is not None:
                self.logger.warning(
                    "公司域名解析失败，回退到最近一次缓存结果 domain=%s error=%s", host, exc
                )
                return targets
            raise

        resolved = join_resolved_targets(answer.addresses, port)
        self.logger.info(
            "公司域名解析命中真实地址 domain=%s resolver=%s targets=%s ttl=%ss",
            host,
            answer.resolver,
            resolved,
            answer.ttl,
        )
        self._update_domain(host, answer.addresses, answer.ttl)
        return resolved

    def refresh(self) -> None:
        """Re-resolve domains that expire within the refresh lead and update their routes."""
        horizon = time.monotonic() + self.refresh_lead
        with self._lock:
            due = [name for name, entry in self._domains.items() if entry.expires_at <= horizon]

        for domain in due:
            try:
                answer = self._lookup_domain(domain)
            except Exception as exc:
                self.logger.warning("刷新公司域名解析失败 domain=%s error=%s", domain, exc)
                continue
            try:
                self._update_domain(domain, answer.addresses, answer.ttl)
            except Exception as exc:
                self.logger.warning("刷新公司域名主机路由失败 domain=%s error=%s", domain, exc)

    def dynamic_routes(self) -> list[str]:
        """Sorted host routes currently installed for resolved domains."""
        with self._lock:
            return sorted(self._route_refs)

    def _cached_targets(self, domain: str, port: str, deadline: float) -> Optional[list[str]]:
        with self._lock:
            entry = self._domains.get(domain)
            if entry is None or deadline > entry.expires_at or not entry.addresses:
                return None
            return join_resolved_targets(entry.addresses, port)

    def _update_domain(self, domain: str, addresses: list[Address], ttl: float) -> None:
        if ttl <= 0:
            ttl = _DEFAULT_TTL
        routes = prefixes_from_addrs(addresses)

        with self._lock:
            current = self._domains.get(domain, _ResolvedDomain())
            to_add = [route for route in routes if self._route_refs.get(route, 0) == 0]

            next_counts = dict(self._route_refs)
            for route in current.routes:
                if next_counts.get(route, 0) <= 1:
                    next_counts.pop(route, None)
                else:
                    next_counts[route] -= 1
            for route in routes:
                next_counts[route] = next_counts.get(route, 0) + 1

            to_remove = [route for route in current.routes if next_counts.get(route, 0) == 0]

            if to_add:
                self.platform.apply_company_bypass_routes(self.iface, to_add)
            if to_remove:
                self.platform.clear_company_bypass_routes(self.iface, to_remove)

            self._route_refs = next_counts
            self._domains[domain] = _ResolvedDomain(
                addresses=list(addresses),
                routes=list(routes),
                expires_at=time.monotonic() + ttl,
            )
            active = sorted(self._route_refs)
            if self.snapshot_writer is not None:
                self.snapshot_writer(active)
            if to_add or to_remove:
                expires = (datetime.now().astimezone() + timedelta(seconds=ttl)).isoformat(
                    timespec="seconds"
                )
                self.logger.info(
                    "已刷新公司动态主机路由 domain=%s iface=%s add=%s remove=%s active=%s expires=%s",
                    domain,
                    self.iface,
                    to_add,
                    to_remove,
                    active,
                    expires,
                )

    def _lookup_domain(self, domain: str) -> _DNSAnswer:
        last_error: Optional[Exception] = None
        for resolver in self.resolvers:
            try:
                answer = self._query_resolver(resolver, domain, dns.rdatatype.A)
            except (dns.exception.DNSException, OSError, ValueError) as exc:
                last_error = exc
                continue
            if answer.addresses:
                return answer
        if last_error is None:
            last_error = LookupError(f"公司域名 {domain} 没有可用的真实 IP 解析结果")
        raise last_error

    def _query_resolver(self, resolver: str, domain: str, qtype: int) -> _DNSAnswer:
        split = _split_host_port(resolver)
        if split is None or not split[1].isdigit():
            raise ValueError(f"invalid resolver address {resolver!r}")
        host, port = split

        query = dns.message.make_query(dns.name.from_text(domain), qtype)
        query.flags |= dns.flags.RD
        response = dns.query.udp(
            query,
            host,
            port=int(port),
            timeout=_QUERY_TIMEOUT,
            source=_resolver_source_address(self.iface, resolver),
        )
        if response is None:
            raise OSError(f"resolver {resolver} returned empty response")
        if response.rcode() != dns.rcode.NOERROR:
            raise OSError(f"resolver {resolver} returned {dns.rcode.to_text(response.rcode())}")

        addresses: list[Address] = []
        ttl = 0.0
        for rrset in response.answer:
            if rrset.rdtype not in (dns.rdatatype.A, dns.rdatatype.AAAA):
                continue
            for record in rrset:
                addr = _parse_addr(record.address)
                if addr is None or is_fake_company_addr(addr):
                    continue
                addresses.append(addr)
                ttl = min_positive_ttl(ttl, float(rrset.ttl))
        if not addresses:
            raise OSError(f"resolver {resolver} returned only fake or empty answers for {domain}")

        addresses.sort(key=str)
        return _DNSAnswer(addresses=addresses, ttl=ttl, resolver=resolver)