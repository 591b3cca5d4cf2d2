import ipaddress
import socket
import threading
import time

import dns.message
import dns.rrset
import pytest

from proxyseparator.runtime.company_dns import (
    CompanyDomainDialer,
    is_fake_company_addr,
    join_resolved_targets,
    min_positive_ttl,
    normalize_company_resolvers,
    prefixes_from_addrs,
    split_dial_target,
)


class _FakePlatform:
    def __init__(self):
        self.bypass_interface = ""
        self.bypass_routes = []
        self.cleared_bypass = []

    def apply_company_bypass_routes(self, iface, routes):
        self.bypass_interface = iface
        self.bypass_routes = list(routes)

    def clear_company_bypass_routes(self, iface, routes):
        self.cleared_bypass = list(routes)


class _DNSServer:
    def __init__(self, handler):
        self.handler = handler
        self.queries = 0
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.1)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    @property
    def address(self):
        host, port = self.sock.getsockname()
        return f"{host}:{port}"

    def start(self):
        self._thread.start()

    def stop(self):
        self._stop.set()
        self._thread.join(timeout=2)
        self.sock.close()

    def _serve(self):
        while not self._stop.is_set():
            try:
                data, peer = self.sock.recvfrom(4096)
            except socket.timeout:
                continue
            except OSError:
                return
            request = dns.message.from_wire(data)
            self.queries += 1
            response = dns.message.make_response(request)
            for question in request.question:
                domain = question.name.to_text().rstrip(".").lower()
                found = self.handler(domain)
                if found is None:
                    continue
                for value, ttl in found:
                    response.answer.append(dns.rrset.from_text(question.name, ttl, "IN", "A", value))
            self.sock.sendto(response.to_wire(), peer)


@pytest.fixture
def start_dns_server():
    servers = []

    def start(handler):
        server = _DNSServer(handler)
        server.start()
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.stop()


def _answers_for(expected_domain, value, ttl=60):
    def handler(domain):
        if domain != expected_domain:
            return None
        return [(value, ttl)]

    return handler


def test_uses_real_resolver_and_registers_host_route(start_dns_server):
    server = start_dns_server(_answers_for("auth.4a.cmft", "203.0.113.10"))
    platform = _FakePlatform()
    dialer = CompanyDomainDialer(platform, "utun4", [server.address])

    targets = dialer.prepare_dial_targets("auth.4a.cmft:443")

    assert targets == ["203.0.113.10:443"]
    assert platform.bypass_interface == "utun4"
    assert platform.bypass_routes == ["203.0.113.10/32"]
    assert dialer.dynamic_routes() == ["203.0.113.10/32"]


def test_skips_fake_ip_answers(start_dns_server):
    fake = start_dns_server(_answers_for("auth.4a.cmft", "198.18.2.24"))
    real = start_dns_server(_answers_for("auth.4a.cmft", "203.0.113.21"))
    dialer = CompanyDomainDialer(_FakePlatform(), "utun4", [fake.address, real.address])

    assert dialer.prepare_dial_targets("auth.4a.cmft:443") == ["203.0.113.21:443"]


def test_refresh_replaces_expired_routes(start_dns_server):
    lock = threading.Lock()
    current = {"ip": "203.0.113.30"}

    def handler(domain):
        if domain != "auth.4a.cmft":
            return None
        with lock:
            return [(current["ip"], 1)]

    server = start_dns_server(handler)
    platform = _FakePlatform()
    dialer = CompanyDomainDialer(platform, "utun4", [server.address])
    dialer.refresh_lead = 0

    dialer.prepare_dial_targets("auth.4a.cmft:443")
    time.sleep(1.1)
    with lock:
        current["ip"] = "203.0.113.31"

    dialer.refresh()

    assert dialer.dynamic_routes() == ["203.0.113.31/32"]
    assert platform.cleared_bypass == ["203.0.113.30/32"]
    assert platform.bypass_routes == ["203.0.113.31/32"]


def test_cached_result_is_reused(start_dns_server):
    server = start_dns_server(_answers_for("auth.4a.cmft", "203.0.113.40"))
    dialer = CompanyDomainDialer(_FakePlatform(), "utun4", [server.address])

    first = dialer.prepare_dial_targets("auth.4a.cmft:443")
    second = dialer.prepare_dial_targets("auth.4a.cmft:8443")

    assert first == ["203.0.113.40:443"]
    assert second == ["203.0.113.40:8443"]
    assert server.queries == 1


def test_snapshot_writer_receives_active_routes(start_dns_server):
    server = start_dns_server(_answers_for("auth.4a.cmft", "203.0.113.50"))
    written = []
    dialer = CompanyDomainDialer(_FakePlatform(), "utun4", [server.address], written.append)

    dialer.prepare_dial_targets("auth.4a.cmft:443")

    assert written == [["203.0.113.50/32"]]


def test_ip_target_is_returned_without_lookup():
    platform = _FakePlatform()
    dialer = CompanyDomainDialer(platform, "utun4", [])
    assert dialer.prepare_dial_targets("203.0.113.9:443") == ["203.0.113.9:443"]
    assert dialer.prepare_dial_targets("[2001:DB8::1]:443") == ["[2001:db8::1]:443"]
    assert platform.bypass_routes == []


def test_target_without_port_raises():
    dialer = CompanyDomainDialer(_FakePlatform(), "utun4", [])
    with pytest.raises(ValueError):
        dialer.prepare_dial_targets("auth.4a.cmft")


def test_normalize_company_resolvers():
    result = normalize_company_resolvers([" 1.1.1.1 ", "1.1.1.1:53", "", "::1", "10.0.0.2:5353"])
    assert result == ["1.1.1.1:53", "[::1]:53", "10.0.0.2:5353", "127.0.0.1:53"]


def test_normalize_company_resolvers_keeps_single_loopback():
    assert normalize_company_resolvers(["127.0.0.1"]) == ["127.0.0.1:53"]


def test_prefixes_from_addrs_dedupes_and_sorts():
    addresses = [
        ipaddress.ip_address("203.0.113.9"),
        ipaddress.ip_address("2001:db8::1"),
        ipaddress.ip_address("203.0.113.10"),
        ipaddress.ip_address("203.0.113.9"),
    ]
    assert prefixes_from_addrs(addresses) == [
        "2001:db8::1/128",
        "203.0.113.10/32",
        "203.0.113.9/32",
    ]


@pytest.mark.parametrize(
    "text, fake",
    [
        ("198.18.0.1", True),
        ("198.19.255.255", True),
        ("198.20.0.1", False),
        ("203.0.113.1", False),
        ("2001:db8::1", False),
    ],
)
def test_is_fake_company_addr(text, fake):
    assert is_fake_company_addr(ipaddress.ip_address(text)) is fake


@pytest.mark.parametrize(
    "current, next_ttl, expected",
    [(0, 30, 30), (30, 0, 30), (60, 30, 30), (30, 60, 30), (-1, 10, 10)],
)
def test_min_positive_ttl(current, next_ttl, expected):
    assert min_positive_ttl(current, next_ttl) == expected


def test_split_dial_target():
    assert split_dial_target("auth.4a.cmft:443") == ("auth.4a.cmft", "443")
    assert split_dial_target("[::1]:53") == ("::1", "53")
    with pytest.raises(ValueError):
        split_dial_target("::1")


def test_join_resolved_targets():
    addresses = [ipaddress.ip_address("203.0.113.1"), ipaddress.ip_address("2001:db8::2")]
    assert join_resolved_targets(addresses, "443") == ["203.0.113.1:443", "[2001:db8::2]:443"]