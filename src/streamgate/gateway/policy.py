"""
gateway/policy.py — Cross-Origin and Host-Binding Policy

Two independent checks applied by the gateway:

  cors_headers()  advisory CORS: headers are attached when the request
                  Origin is on the allow-list, omitted otherwise. Never
                  blocks a request.

  HostGuard       DNS-rebinding protection: when enabled, requests whose
                  Host (or Origin) is not on the allow-list are rejected
                  with 403. Enabled whenever an origin allow-list is set.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence


CORS_ALLOW_METHODS = "GET, POST, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type"


def cors_headers(
    origin: Optional[str],
    allowed_origins: Sequence[str],
) -> dict[str, str]:
    """Return the CORS headers to attach for `origin`, or {} if none apply."""
    if not allowed_origins or not origin or origin not in allowed_origins:
        return {}
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
        "Access-Control-Allow-Credentials": "true",
    }


def allowed_hosts_for(host: str, port: int) -> list[str]:
    """Host header values a client may legitimately send to this listener."""
    return [host, f"{host}:{port}", "localhost", f"localhost:{port}"]


def is_loopback(host: str) -> bool:
    """True for `localhost` and IPv4/IPv6 loopback literals."""
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host.strip("[]")).is_loopback
    except ValueError:
        return False


@dataclass(frozen=True)
class HostGuard:
    """Host/Origin allow-list check for stream and message requests."""

    allowed_hosts: tuple[str, ...] = ()
    allowed_origins: tuple[str, ...] = ()
    enabled: bool = False

    @classmethod
    def for_listener(
        cls,
        host: str,
        port: int,
        allowed_origins: Sequence[str] = (),
    ) -> "HostGuard":
        return cls(
            allowed_hosts=tuple(allowed_hosts_for(host, port)),
            allowed_origins=tuple(allowed_origins),
            enabled=len(allowed_origins) > 0,
        )

    def check(self, headers: Mapping[str, str]) -> Optional[str]:
        """Return a diagnostic if the request must be rejected, else None."""
        if not self.enabled:
            return None

        if self.allowed_hosts:
            host = headers.get("Host")
            if not host or host not in self.allowed_hosts:
                return f"Invalid Host header: {host}"

        if self.allowed_origins:
            origin = headers.get("Origin")
            # A missing Origin passes; only a mismatching one is rejected.
            if origin and origin not in self.allowed_origins:
                return f"Invalid Origin header: {origin}"

        return None
