from __future__ import annotations

from types import SimpleNamespace

import pytest

from app.services.internal_auth import (
    INTERNAL_TOKEN_HEADER,
    extract_client_ip,
    is_client_ip_allowed,
    is_internal_request_authenticated,
    is_valid_internal_token,
    parse_address_list,
)


@pytest.mark.parametrize(
    ("expected", "received", "valid"),
    [
        ("secret", "secret", True),
        ("secret", "Secret", False),
        ("secret", None, False),
        ("", "", False),
    ],
)
def test_internal_token_must_match_exactly(expected: str, received: str | None, valid: bool) -> None:
    assert is_valid_internal_token(expected_token=expected, received_token=received) is valid


def test_request_authenticates_only_through_token_header() -> None:
    with_header = SimpleNamespace(headers={INTERNAL_TOKEN_HEADER: "secret"})
    without_header = SimpleNamespace(headers={"Authorization": "Bearer secret"})

    assert is_internal_request_authenticated(with_header, expected_token="secret") is True
    assert is_internal_request_authenticated(without_header, expected_token="secret") is False


@pytest.mark.parametrize(
    ("client_ip", "allowed"),
    [
        ("127.0.0.1", True),
        ("10.12.33.1", True),
        ("::1", True),
        ("192.168.1.5", False),
        ("not-an-ip", False),
        (None, False),
    ],
)
def test_client_ip_allowlist_supports_hosts_and_networks(client_ip: str | None, allowed: bool) -> None:
    allowlist = "127.0.0.1, 10.0.0.0/8, ::1, garbage"
    assert is_client_ip_allowed(client_ip=client_ip, allowlist=allowlist) is allowed


def test_empty_allowlist_admits_nobody() -> None:
    assert is_client_ip_allowed(client_ip="127.0.0.1", allowlist="") is False


@pytest.mark.parametrize(
    ("client_host", "forwarded_for", "expected"),
    [
        ("127.0.0.1", "10.1.1.8, 127.0.0.1", "10.1.1.8"),
        ("198.51.100.10", "10.1.1.8, 127.0.0.1", "198.51.100.10"),
        ("127.0.0.1", "not-an-ip, 127.0.0.1", None),
        ("127.0.0.1", "2001:db8::10, 127.0.0.1", "2001:db8::10"),
    ],
)
def test_forwarded_header_is_trusted_only_from_known_proxies(
    client_host: str,
    forwarded_for: str,
    expected: str | None,
) -> None:
    request = SimpleNamespace(
        headers={"X-Forwarded-For": forwarded_for},
        client=SimpleNamespace(host=client_host),
    )
    assert extract_client_ip(request, trusted_proxies="127.0.0.1/32") == expected


def test_client_ip_falls_back_to_socket_peer() -> None:
    request = SimpleNamespace(headers={}, client=SimpleNamespace(host="127.0.0.1"))
    assert extract_client_ip(request) == "127.0.0.1"
    assert extract_client_ip(SimpleNamespace(headers={}, client=None)) is None


def test_forwarded_chain_skips_trusted_hops_and_ignores_spoofed_origin() -> None:
    request = SimpleNamespace(
        headers={"X-Forwarded-For": "203.0.113.9, 10.1.1.8, 10.0.0.2"},
        client=SimpleNamespace(host="127.0.0.1"),
    )

    assert extract_client_ip(request, trusted_proxies="127.0.0.1, 10.0.0.0/30") == "10.1.1.8"


def test_allowlist_entries_are_parsed_once_per_value() -> None:
    first = parse_address_list("127.0.0.1, 10.0.0.0/8, nonsense")

    assert parse_address_list("127.0.0.1, 10.0.0.0/8, nonsense") is first
    assert [str(network) for network in first.networks] == ["127.0.0.1/32", "10.0.0.0/8"]
