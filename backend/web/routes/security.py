"""
Shared web security helpers (identity and same-origin checks for routes).

Identity:
    Authentication happens upstream; the proxy forwards the authenticated
    subject in a trusted header (`IDENTITY_HEADER`, default `X-User-Sub`).
    Routes only ever see that opaque owner id.
"""
from __future__ import annotations

import os
from typing import Optional
from urllib.parse import urlparse

from fastapi import Request
from fastapi.responses import JSONResponse

DEFAULT_IDENTITY_HEADER = "X-User-Sub"


def cache_headers() -> dict[str, str]:
    return {"Cache-Control": "private, no-store", "Vary": "Origin"}


def private_response(body, *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers=cache_headers())


def error_response(error: str, *, status_code: int, detail: Optional[str] = None) -> JSONResponse:
    body = {"error": error}
    if detail:
        body["detail"] = detail
    return private_response(body, status_code=status_code)


def identity_header_name() -> str:
    return (os.getenv("IDENTITY_HEADER") or DEFAULT_IDENTITY_HEADER).strip() or DEFAULT_IDENTITY_HEADER


def require_owner(request: Request):
    """Return `(owner_id, None)` or `(None, 401 response)`."""
    owner_id = (request.headers.get(identity_header_name()) or "").strip()
    if not owner_id:
        return None, error_response("unauthenticated", status_code=401)
    return owner_id, None


def _parse_origin(url: str) -> tuple[str, str, int]:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    port = p.port if p.port is not None else (443 if scheme == "https" else 80)
    return scheme, p.hostname.lower(), int(port)


def _server_origin(request: Request) -> tuple[str, str, int]:
    trust_proxy = (os.getenv("ARCHIVE_TRUST_PROXY", "false") or "").lower() == "true"
    scheme = (request.url.scheme or "http").lower()
    host = (request.url.hostname or "").lower()
    port = int(request.url.port) if request.url.port else (443 if scheme == "https" else 80)
    if trust_proxy:
        xf_proto = (request.headers.get("x-forwarded-proto") or "").split(",")[0].strip()
        xf_host = (request.headers.get("x-forwarded-host") or "").split(",")[0].strip()
        if xf_proto:
            scheme = xf_proto.lower()
            port = 443 if scheme == "https" else 80
        if xf_host:
            if ":" in xf_host:
                host_only, port_str = xf_host.rsplit(":", 1)
                host = host_only.lower()
                try:
                    port = int(port_str)
                except ValueError:
                    port = 443 if scheme == "https" else 80
            else:
                host = xf_host.lower()
    return scheme, host, port


def is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Behavior:
    - If Origin is present, require exact scheme/host/port match with server.
    - Else if Referer is present, validate its origin similarly.
    - Else (no headers): allow to not break non-browser clients.
    Proxy awareness: Only trust X-Forwarded-* when ARCHIVE_TRUST_PROXY=true.
    """
    candidate = request.headers.get("origin") or request.headers.get("referer")
    if not candidate:
        return True
    try:
        return _parse_origin(candidate) == _server_origin(request)
    except ValueError:
        return False


def require_same_origin(request: Request) -> Optional[JSONResponse]:
    if is_same_origin(request):
        return None
    return error_response("forbidden", status_code=403, detail="csrf_violation")
