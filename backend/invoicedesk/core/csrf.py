"""Origin/Referer cross-check for state-changing requests.

This is a header comparison, not a token scheme. Browsers attach ``Origin``
(or at least ``Referer``) to cross-site form posts and fetches, so requiring
either header to name our own host blocks forged submissions. Requests with
neither header come from non-browser clients or same-site navigations and are
let through.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlsplit

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _url_host(url: str) -> Optional[str]:
    """Return ``host[:port]`` for an absolute http(s) URL, else ``None``.

    IPv6 literals are re-bracketed so they compare equal to the ``Host`` header.
    """
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return None
    if parts.scheme not in _DEFAULT_PORTS or not parts.hostname:
        return None
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS[parts.scheme]:
        host = f"{host}:{port}"
    return host


def _normalize_host_header(host: str) -> str:
    host = host.strip().lower()
    for scheme_port in (":80", ":443"):
        if host.endswith(scheme_port):
            return host[: -len(scheme_port)]
    return host


def validate_origin(origin: Optional[str], referer: Optional[str], host: Optional[str]) -> bool:
    """True when the request may proceed.

    - neither ``Origin`` nor ``Referer``: allowed
    - ``Origin`` present: its host must equal ``Host``
    - otherwise ``Referer`` host must equal ``Host``
    - malformed URLs or a missing ``Host`` are denied
    """
    if not origin and not referer:
        return True
    if not host:
        return False
    expected = _normalize_host_header(host)

    candidate = origin if origin else referer
    candidate_host = _url_host(candidate or "")
    if candidate_host is None:
        return False
    return candidate_host == expected
