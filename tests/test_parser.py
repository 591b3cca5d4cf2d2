import ipaddress

import pytest

from proxyseparator.rules.parser import parse_lines, parse_rule
from proxyseparator.rules.types import RuleType


def test_parse_lines_summary_from_mixed_rules():
    result = parse_lines(
        [
            ".company.com",
            "api.example.com",
            "corp",
            "8.8.8.0/24",
            "10.0.0.0/99",
        ]
    )
    assert len(result.invalid) == 1
    summary = result.summary
    assert summary.domain_suffix == 1
    assert summary.domain_exact == 1
    assert summary.domain_keyword == 1
    assert summary.cidr == 1
    assert summary.total == 5
    assert summary.valid == 4
    assert summary.invalid == 1
    assert result.valid == [".company.com", "api.example.com", "corp", "8.8.8.0/24"]


def test_invalid_rule_records_line_input_and_reason():
    result = parse_lines(["corp", "  10.0.0.0/99  "])
    assert len(result.invalid) == 1
    invalid = result.invalid[0]
    assert invalid.line == 2
    assert invalid.input == "  10.0.0.0/99  "
    assert invalid.reason == "无效的完整域名"


def test_blank_lines_and_comments_count_only_in_total():
    result = parse_lines(["", "   ", "# comment", "corp"])
    assert result.summary.total == 4
    assert result.summary.valid == 1
    assert result.summary.invalid == 0
    assert [rule.original for rule in result.compiled] == ["corp"]


def test_suffix_rule_drops_leading_dot():
    rule = parse_rule(".Company.COM")
    assert rule.type is RuleType.DOMAIN_SUFFIX
    assert rule.normalized == "company.com"
    assert rule.original == ".Company.COM"


def test_cidr_rule_keeps_network():
    rule = parse_rule("8.8.8.0/24")
    assert rule.type is RuleType.IP_CIDR
    assert rule.normalized == "8.8.8.0/24"
    assert rule.prefix == ipaddress.ip_network("8.8.8.0/24")


def test_cidr_rule_preserves_host_bits_in_text():
    rule = parse_rule("10.0.0.1/8")
    assert rule.normalized == "10.0.0.1/8"
    assert rule.prefix == ipaddress.ip_network("10.0.0.0/8")


def test_ipv6_cidr_rule():
    rule = parse_rule("2001:DB8::/32")
    assert rule.type is RuleType.IP_CIDR
    assert rule.normalized == "2001:db8::/32"


def test_exact_rule_strips_trailing_dot():
    rule = parse_rule("api.example.com.")
    assert rule.type is RuleType.DOMAIN_EXACT
    assert rule.normalized == "api.example.com"


@pytest.mark.parametrize(
    "text, rule_type, normalized",
    [
        ("DOMAIN-SUFFIX,company.com", RuleType.DOMAIN_SUFFIX, "company.com"),
        ("DOMAIN,api.example.com", RuleType.DOMAIN_EXACT, "api.example.com"),
        ("DOMAIN-KEYWORD,localhost", RuleType.DOMAIN_KEYWORD, "localhost"),
        ("IP-CIDR,10.0.0.0/8", RuleType.IP_CIDR, "10.0.0.0/8"),
        ("domain-keyword , service", RuleType.DOMAIN_KEYWORD, "service"),
    ],
)
def test_prefixed_rules(text, rule_type, normalized):
    rule = parse_rule(text)
    assert rule.type is rule_type
    assert rule.normalized == normalized
    assert rule.original == text


def test_unknown_prefix_falls_back_to_keyword():
    rule = parse_rule("FOO,bar")
    assert rule.type is RuleType.DOMAIN_KEYWORD
    assert rule.normalized == "foo,bar"


@pytest.mark.parametrize(
    "text, reason",
    [
        ("", "空规则"),
        ("   ", "空规则"),
        ("DOMAIN-KEYWORD,   ", "无效的关键词规则"),
        ("IP-CIDR,not-a-cidr", "无效的 CIDR 规则"),
        ("DOMAIN-SUFFIX,.company.com", "无效的域名后缀"),
        (".-bad", "无效的域名后缀"),
        ("DOMAIN,localhost", "无效的完整域名"),
        ("10.0.0.0/08", "无效的完整域名"),
        ("bad_name.com", "无效的完整域名"),
    ],
)
def test_invalid_rules_raise_with_reason(text, reason):
    with pytest.raises(ValueError) as excinfo:
        parse_rule(text)
    assert str(excinfo.value) == reason


def test_bare_address_without_bits_is_not_cidr():
    rule = parse_rule("8.8.8.8")
    assert rule.type is RuleType.DOMAIN_EXACT
    assert rule.prefix is None