"""
Tests for typed session access.
"""

from typing import Optional

import pytest
from fastapi import Request

from oidc_gate.auth.errors import SessionError
from oidc_gate.auth.session import SessionAccessor
from oidc_gate.models import OidcSession


def make_request(session: Optional[dict] = None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "scheme": "http",
        "server": ("testserver", 80),
        "path": "/",
        "root_path": "",
        "query_string": b"",
        "headers": [],
    }
    if session is not None:
        scope["session"] = session
    return Request(scope)


@pytest.fixture
def sessions():
    return SessionAccessor()


def test_store_keys_are_fixed():
    assert OidcSession.store_keys() == [
        "oidcAuthorized",
        "oidcState",
        "oidcOriginalRequestUrl",
        "oidcClaims",
        "oidcIDToken",
    ]


def test_empty_session_loads_as_logged_out(sessions):
    record = sessions.load(make_request({}))

    assert record == OidcSession()
    assert record.authorized is False
    assert record.state is None


def test_load_reads_store_keys(sessions):
    store = {
        "oidcAuthorized": True,
        "oidcClaims": '{"sub": "abc"}',
        "oidcIDToken": "raw-token",
        "unrelated": 1,
    }

    record = sessions.load(make_request(store))

    assert record.authorized is True
    assert record.claims == '{"sub": "abc"}'
    assert record.id_token == "raw-token"


def test_save_writes_aliases_and_drops_none(sessions):
    store = {"oidcIDToken": "old", "cart": ["item"]}

    sessions.save(make_request(store), OidcSession(state="abc", original_request_url="/protected"))

    assert store == {
        "oidcAuthorized": False,
        "oidcState": "abc",
        "oidcOriginalRequestUrl": "/protected",
        "cart": ["item"],
    }


def test_unreadable_values_raise(sessions):
    with pytest.raises(SessionError) as exc_info:
        sessions.load(make_request({"oidcState": ["not", "a", "string"]}))

    assert "failed to read session" in str(exc_info.value)


def test_missing_store_raises_on_load_and_save(sessions):
    request = make_request()

    with pytest.raises(SessionError):
        sessions.load(request)
    with pytest.raises(SessionError):
        sessions.save(request, OidcSession())


def test_oversized_save_raises_and_leaves_store_untouched():
    sessions = SessionAccessor(max_cookie_bytes=300)
    store = {"cart": ["item"]}

    with pytest.raises(SessionError) as exc_info:
        sessions.save(make_request(store), OidcSession(authorized=True, claims="x" * 400))

    assert exc_info.value.message == "session too large for cookie store"
    assert store == {"cart": ["item"]}


def test_size_counts_keys_the_gate_does_not_own():
    sessions = SessionAccessor(max_cookie_bytes=300)
    store = {"cart": ["item"] * 100}

    with pytest.raises(SessionError):
        sessions.save(make_request(store), OidcSession(state="abc"))


def test_size_limit_can_be_disabled():
    sessions = SessionAccessor(max_cookie_bytes=0)
    store = {}

    sessions.save(make_request(store), OidcSession(claims="x" * 10000))

    assert store["oidcClaims"] == "x" * 10000


def test_cookie_size_grows_with_name_and_payload():
    short = SessionAccessor("s")
    long = SessionAccessor("a-much-longer-cookie-name")

    assert long.cookie_size({}) - short.cookie_size({}) == len("a-much-longer-cookie-name") - 1
    assert short.cookie_size({"k": "x" * 300}) > short.cookie_size({"k": "x"}) + 300
