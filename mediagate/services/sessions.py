# mediagate/services/sessions.py
from __future__ import annotations

"""
MediaGate — Share sessions & access checks
==========================================

Who is asking?
--------------
Every media request is classified into exactly one `AccessCheck` variant:

- `Admin`                 → valid `X-Admin-Key`; bypasses session binding and the password gate
- `AuthenticatedSession`  → carries `share_session_{project_id}`
- `Guest`                 → carries `share_guest_{project_id}` on a guest-mode project
- `Denied`                → anything else (reason + HTTP status)

Consumers branch with an `isinstance` chain that ends in `raise TypeError`, so a
new variant cannot be silently ignored.

Cookies
-------
| Cookie                       | Meaning                                   |
|------------------------------|-------------------------------------------|
| `share_session_{project_id}` | opaque share session id (token binding)   |
| `share_auth_{project_id}`    | `"true"` once the password gate passed  |
| `share_guest_{project_id}`   | guest viewer id (guest-mode projects only)|
"""

from dataclasses import dataclass
from typing import Optional, Union

from fastapi import Request

from mediagate.api.http_utils import admin_key_matches, fingerprint

SESSION_COOKIE = "share_session_{project_id}"
AUTH_COOKIE = "share_auth_{project_id}"
GUEST_COOKIE = "share_guest_{project_id}"

_MAX_COOKIE_LEN = 256


def _cookie(request: Request, template: str, project_id: str) -> Optional[str]:
    raw = request.cookies.get(template.format(project_id=project_id))
    if not raw:
        return None
    raw = raw.strip()
    if not raw or len(raw) > _MAX_COOKIE_LEN:
        return None
    return raw


def resolve_session(request: Request, project_id: str) -> Optional[str]:
    """Share session id for `project_id`, or None when the cookie is absent."""
    return _cookie(request, SESSION_COOKIE, project_id)


def has_password_auth(request: Request, project_id: str) -> bool:
    return _cookie(request, AUTH_COOKIE, project_id) == "true"


# ─────────────────────────────────────────────────────────────
# 🧩 Access check variants
# ─────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Denied:
    reason: str
    status_code: int = 401


@dataclass(frozen=True)
class Admin:
    identity: str


@dataclass(frozen=True)
class AuthenticatedSession:
    session_id: str


@dataclass(frozen=True)
class Guest:
    session_id: str


AccessCheck = Union[Denied, Admin, AuthenticatedSession, Guest]


@dataclass(frozen=True)
class SessionScope:
    """What token operations need from an access check."""

    session_id: str
    bypass_binding: bool
    is_admin: bool


def check_access(request: Request, project_id: str, *, guest_mode: bool = False) -> AccessCheck:
    """
    Classify the caller for `project_id`.

    Order: admin key, share session cookie, guest cookie (guest-mode projects
    only). A present-but-wrong admin key is not an error here; the caller is
    simply treated as a viewer.
    """
    if admin_key_matches(request):
        key = request.headers.get("x-admin-key") or ""
        return Admin(identity=f"admin:{fingerprint(key)}")

    session_id = resolve_session(request, project_id)
    if session_id:
        return AuthenticatedSession(session_id=session_id)

    if guest_mode:
        guest_id = _cookie(request, GUEST_COOKIE, project_id)
        if guest_id:
            return Guest(session_id=f"guest:{guest_id}")

    return Denied(reason="Missing share session", status_code=401)


def session_scope(check: AccessCheck) -> SessionScope:
    """Session id plus binding/admin flags. `Denied` has no scope."""
    if isinstance(check, Admin):
        return SessionScope(session_id=check.identity, bypass_binding=True, is_admin=True)
    if isinstance(check, AuthenticatedSession):
        return SessionScope(session_id=check.session_id, bypass_binding=False, is_admin=False)
    if isinstance(check, Guest):
        return SessionScope(session_id=check.session_id, bypass_binding=False, is_admin=False)
    if isinstance(check, Denied):
        raise ValueError(f"Denied access has no session scope: {check.reason}")
    raise TypeError(f"Unhandled access check: {type(check).__name__}")


def password_gate_passed(check: AccessCheck, request: Request, project_id: str, *, requires_password: bool) -> bool:
    """Password-protected projects need `share_auth_*` for session viewers."""
    if isinstance(check, Admin):
        return True
    if isinstance(check, Guest):
        return True
    if isinstance(check, AuthenticatedSession):
        return not requires_password or has_password_auth(request, project_id)
    if isinstance(check, Denied):
        return False
    raise TypeError(f"Unhandled access check: {type(check).__name__}")


__all__ = [
    "Denied",
    "Admin",
    "AuthenticatedSession",
    "Guest",
    "AccessCheck",
    "SessionScope",
    "resolve_session",
    "has_password_auth",
    "check_access",
    "session_scope",
    "password_gate_passed",
    "SESSION_COOKIE",
    "AUTH_COOKIE",
    "GUEST_COOKIE",
]
