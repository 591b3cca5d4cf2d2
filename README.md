# proxyseparator

Building blocks for a proxy separator. Company traffic takes the normal
system route, where an existing company VPN can carry it. Everything else is
meant for a personal upstream proxy (SOCKS5 or HTTP CONNECT).

## Rules: `proxyseparator.rules`

- `parser.parse_lines(lines)` parses rule lines and returns a `ParseResult`.
  The result holds the compiled rules, the valid originals, an `InvalidRule`
  entry (line number, input, reason) for each bad line, and a `Summary` of
  counts. Blank lines and lines starting with `#` are skipped.
  `parser.parse_rule(text)` compiles a single rule and raises `ValueError`
  with the reason when the rule is invalid.
- These rule forms are accepted:
  - domain suffix: `.company.com` or `DOMAIN-SUFFIX,company.com`
  - exact domain: `api.example.com` or `DOMAIN,api.example.com`
  - keyword: `corp` or `DOMAIN-KEYWORD,corp`
  - CIDR: `10.0.0.0/8` or `IP-CIDR,10.0.0.0/8`
- `matcher.Matcher(compiled).match(target)` takes a host or `host:port` and
  returns a `MatchResult`, whose `target` is a `RouteTarget`:
  - `COMPANY` when a rule matches.
  - `DIRECT` for loopback, private and link-local addresses. See
    `matcher.is_local_or_private_address`.
  - `PERSONAL` otherwise.
- `trie.SuffixTrie` does longest-suffix lookup of domain suffix rules.

```python
from proxyseparator.rules.parser import parse_lines
from proxyseparator.rules.matcher import Matcher

result = parse_lines([".company.com", "api.example.com", "corp", "8.8.8.0/24"])
matcher = Matcher(result.compiled)

print(matcher.match("git.company.com").target)  # company
print(matcher.match("127.0.0.1").target)        # direct
print(matcher.match("google.com").target)       # personal
```

## Runtime pieces: `proxyseparator.runtime`

- `upstream`
  - `probe_upstream(cfg)` connects to an `UpstreamConfig` and returns an
    `UpstreamHealth` that reports whether the upstream is reachable and which
    `Protocol` it speaks (SOCKS5 or HTTP).
  - `detect_socks5` and `detect_http_proxy` run the individual protocol
    checks.
- `system_route`
  - `dial_system_route(addr, dial, lookup)` dials an address. If a host name
    fails to connect, it retries the host's addresses as resolved by the
    system.
  - `dial_system_route_candidates` returns the first of several candidates
    that connects.
  - `lookup_system_route_addrs` runs `dscacheutil` on macOS and returns an
    empty list elsewhere.
- `company_dns.CompanyDomainDialer`
  - Resolves company domains through real resolvers, using UDP DNS through
    dnspython.
  - Skips addresses in `198.18.0.0/15`, the range used for fake IPs.
  - Installs /32 or /128 host bypass routes through a platform object that
    provides `apply_company_bypass_routes` and `clear_company_bypass_routes`.
    Routes are reference-counted.
  - `refresh()` re-resolves entries that are about to expire.
- `bypass_routes`
  - `company_bypass_cidrs(rules)` returns the sorted, unique CIDRs named in
    the rules.
  - `merge_route_lists(*lists)` merges route lists.
- `stats.StatsTracker` counts sessions and bytes for each route target.
  `snapshot(mode)` returns a `TrafficStats` with totals and per-second rates.
- `journal.RecoveryJournal` saves, loads and removes a JSON snapshot of the
  network state. Failures raise `RecoveryError`.
- `events`
  - `EventEmitter` is the interface for event sinks.
  - `NopEmitter` discards every event.
- `tun_interfaces`
  - `wait_for_interface` finds the interface a TUN device comes up as.
  - `find_new_interface`, `interface_score`, `device_hint` and
    `snapshot_interfaces` are the helpers it uses.

## What this package does not do

- It runs no local HTTP or SOCKS5 proxy server.
- It does not forward connections through the personal upstream.
- It runs no preflight checks before start-up.
- It changes no system proxy, DNS or TUN settings itself. Route changes go
  only through the platform object you supply.
- It has no command-line program.

## Installing

```
pip install .
```

For the tests:

```
pip install .[test]
pytest
```