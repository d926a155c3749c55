from __future__ import annotations

import pytest

from invoicedesk.core.csrf import validate_origin


def test_foreign_origin_is_denied():
    assert not validate_origin("https://evil.example", None, "myapp.example")


def test_missing_origin_and_referer_is_allowed():
    assert validate_origin(None, None, "myapp.example")


def test_matching_referer_is_allowed():
    assert validate_origin(None, "https://myapp.example/invoices/4", "myapp.example")


def test_foreign_referer_is_denied():
    assert not validate_origin(None, "https://evil.example/page", "myapp.example")


def test_origin_decides_when_both_headers_present():
    assert not validate_origin("https://evil.example", "https://myapp.example/x", "myapp.example")
    assert validate_origin("https://myapp.example", "https://evil.example/x", "myapp.example")


@pytest.mark.parametrize(
    "origin, host, allowed",
    [
        ("https://myapp.example:443", "myapp.example", True),
        ("http://localhost:3000", "localhost:3000", True),
        ("http://localhost:3000", "localhost:8000", False),
        ("https://MyApp.Example", "myapp.example", True),
    ],
)
def test_ports_and_case(origin, host, allowed):
    assert validate_origin(origin, None, host) is allowed


@pytest.mark.parametrize("origin", ["null", "not a url", "ftp://myapp.example", "https://"])
def test_malformed_origin_is_denied(origin):
    assert not validate_origin(origin, None, "myapp.example")


def test_missing_host_header_is_denied_when_origin_sent():
    assert not validate_origin("https://myapp.example", None, None)


@pytest.mark.parametrize(
    "origin, host, allowed",
    [
        ("http://[::1]:8000", "[::1]:8000", True),
        ("http://[::1]", "[::1]", True),
        ("https://[2001:DB8::1]:443", "[2001:db8::1]", True),
        ("http://[::1]:8000", "[::1]:9000", False),
        ("http://[::2]:8000", "[::1]:8000", False),
    ],
)
def test_ipv6_hosts(origin, host, allowed):
    assert validate_origin(origin, None, host) is allowed
