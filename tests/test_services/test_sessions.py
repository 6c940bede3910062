from dataclasses import dataclass

import pytest

from mediagate.services.sessions import (
    Admin,
    AuthenticatedSession,
    Denied,
    Guest,
    check_access,
    password_gate_passed,
    resolve_session,
    session_scope,
)
from tests.fixtures.media import ADMIN_KEY, make_request


def _req(cookie: str = "", admin_key: str = ""):
    headers = {}
    if cookie:
        headers["cookie"] = cookie
    if admin_key:
        headers["x-admin-key"] = admin_key
    return make_request(headers=headers)


@dataclass(frozen=True)
class Impersonator:
    session_id: str


def test_admin_key_wins_over_cookies():
    check = check_access(_req("share_session_p1=s1", ADMIN_KEY), "p1")
    assert isinstance(check, Admin)
    assert check.identity.startswith("admin:")
    assert ADMIN_KEY not in check.identity


def test_wrong_admin_key_falls_back_to_viewer():
    check = check_access(_req("share_session_p1=s1", "nope"), "p1")
    assert check == AuthenticatedSession(session_id="s1")


def test_session_cookie_is_per_project():
    assert resolve_session(_req("share_session_p1=s1"), "p1") == "s1"
    assert resolve_session(_req("share_session_p1=s1"), "p2") is None
    assert check_access(_req("share_session_p1=s1"), "p2") == Denied("Missing share session", 401)


def test_oversized_cookie_is_ignored():
    assert resolve_session(_req("share_session_p1=" + "x" * 300), "p1") is None


def test_guest_cookie_only_counts_in_guest_mode():
    req = _req("share_guest_p4=g1")
    assert check_access(req, "p4", guest_mode=True) == Guest(session_id="guest:g1")
    assert isinstance(check_access(req, "p4", guest_mode=False), Denied)


def test_session_scope_per_variant():
    admin = session_scope(Admin(identity="admin:x"))
    assert admin.bypass_binding and admin.is_admin

    viewer = session_scope(AuthenticatedSession(session_id="s1"))
    assert viewer.session_id == "s1"
    assert not viewer.bypass_binding and not viewer.is_admin

    guest = session_scope(Guest(session_id="guest:g1"))
    assert guest.session_id == "guest:g1" and not guest.bypass_binding

    with pytest.raises(ValueError):
        session_scope(Denied("nope"))


def test_unknown_variant_is_a_type_error():
    with pytest.raises(TypeError):
        session_scope(Impersonator(session_id="s1"))
    with pytest.raises(TypeError):
        password_gate_passed(Impersonator(session_id="s1"), _req(), "p1", requires_password=True)


def test_password_gate():
    no_auth = _req("share_session_p3=s1")
    with_auth = _req("share_session_p3=s1; share_auth_p3=true")
    session = AuthenticatedSession(session_id="s1")

    assert password_gate_passed(session, no_auth, "p3", requires_password=False)
    assert not password_gate_passed(session, no_auth, "p3", requires_password=True)
    assert password_gate_passed(session, with_auth, "p3", requires_password=True)
    assert password_gate_passed(Admin("admin:x"), no_auth, "p3", requires_password=True)
    assert password_gate_passed(Guest("guest:g"), no_auth, "p3", requires_password=True)
    assert not password_gate_passed(Denied("x"), with_auth, "p3", requires_password=False)
