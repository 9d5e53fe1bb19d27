from __future__ import annotations

import ipaddress
import secrets
from dataclasses import dataclass
from functools import lru_cache

import structlog
from fastapi import Request

logger = structlog.get_logger(__name__)

INTERNAL_TOKEN_HEADER = "X-Internal-Token"
FORWARDED_FOR_HEADER = "X-Forwarded-For"

IpAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
IpNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def _as_address(value: str | None) -> IpAddress | None:
    try:
        return ipaddress.ip_address((value or "").strip())
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class AddressList:
    """Comma separated hosts and CIDR blocks; unparseable entries are skipped."""

    networks: tuple[IpNetwork, ...]

    def admits(self, address: IpAddress | None) -> bool:
        return address is not None and any(address in network for network in self.networks)


@lru_cache(maxsize=32)
def parse_address_list(raw: str) -> AddressList:
    networks: list[IpNetwork] = []
    for entry in filter(None, (part.strip() for part in raw.split(","))):
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning("internal_auth_address_entry_ignored", entry=entry)
    return AddressList(networks=tuple(networks))


def is_valid_internal_token(*, expected_token: str, received_token: str | None) -> bool:
    if not (expected_token and received_token):
        return False
    return secrets.compare_digest(expected_token.encode(), received_token.encode())


def is_internal_request_authenticated(request: Request, *, expected_token: str) -> bool:
    return is_valid_internal_token(
        expected_token=expected_token,
        received_token=request.headers.get(INTERNAL_TOKEN_HEADER),
    )


def is_client_ip_allowed(*, client_ip: str | None, allowlist: str) -> bool:
    return parse_address_list(allowlist).admits(_as_address(client_ip))


def extract_client_ip(request: Request, *, trusted_proxies: str = "") -> str | None:
    """Resolve the caller address, honouring X-Forwarded-For only behind a trusted proxy.

    The forwarded chain is read from the nearest hop outwards and the first
    hop that is not itself a trusted proxy is the caller. A malformed hop ends
    the walk with no address.
    """
    peer = _as_address(request.client.host if request.client is not None else None)
    proxies = parse_address_list(trusted_proxies)
    forwarded_for = request.headers.get(FORWARDED_FOR_HEADER)
    if not forwarded_for or not proxies.admits(peer):
        return str(peer) if peer is not None else None

    hops = [hop.strip() for hop in forwarded_for.split(",")]
    caller: IpAddress | None = None
    for hop in reversed(hops):
        caller = _as_address(hop)
        if caller is None:
            return None
        if not proxies.admits(caller):
            break
    return str(caller) if caller is not None else None
