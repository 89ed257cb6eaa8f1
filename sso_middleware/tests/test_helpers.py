"""
Session helper and utility tests.
"""

from conftest import create_request
from sso_middleware.auth.helpers import (
    UNBOUNDED_SESSION_REMAINING_TIME,
    get_auth_context,
    get_session,
    get_session_remaining_time,
    is_authenticated,
    save_session,
)
from sso_middleware.auth.utils import generate_state, validate_state
from sso_middleware.models import SessionData, TokenSet

NOW = 1_700_000_000


def _request_with(token_set: TokenSet):
    return create_request(session={"tokenSet": token_set.model_dump()})


class TestIsAuthenticated:

    def test_false_without_a_session(self):
        assert not is_authenticated(create_request())

    def test_true_with_a_live_token_set(self):
        token_set = TokenSet(access_token="a", refresh_token="r", refresh_expires_at=2 ** 40)
        assert is_authenticated(_request_with(token_set))

    def test_true_while_only_the_access_token_is_expired(self):
        token_set = TokenSet(access_token="a", refresh_token="r", expires_at=NOW, refresh_expires_at=2 ** 40)
        assert is_authenticated(_request_with(token_set))

    def test_false_once_the_session_is_idle_expired(self):
        token_set = TokenSet(access_token="a", refresh_token="r", expires_at=NOW, refresh_expires_at=NOW + 10)
        assert not is_authenticated(_request_with(token_set))


class TestSessionRemainingTime:

    def test_zero_without_a_session(self):
        assert get_session_remaining_time(create_request(), now=NOW) == 0

    def test_counts_down_to_the_refresh_token_expiry(self):
        token_set = TokenSet(access_token="a", expires_at=NOW + 60, refresh_expires_at=NOW + 1800)
        assert get_session_remaining_time(_request_with(token_set), now=NOW + 0.5) == 1799

    def test_falls_back_to_the_access_token_expiry(self):
        token_set = TokenSet(access_token="a", expires_at=NOW + 60)
        assert get_session_remaining_time(_request_with(token_set), now=NOW) == 60

    def test_never_negative(self):
        token_set = TokenSet(access_token="a", refresh_expires_at=NOW - 60)
        assert get_session_remaining_time(_request_with(token_set), now=NOW) == 0

    def test_opaque_refresh_token_keeps_the_session_alive(self):
        token_set = TokenSet(access_token="a", refresh_token="opaque", expires_at=NOW - 10)
        request = _request_with(token_set)

        assert is_authenticated(request)
        assert get_session_remaining_time(request, now=NOW) == UNBOUNDED_SESSION_REMAINING_TIME

    def test_agrees_with_is_authenticated_once_idle_expired(self):
        token_set = TokenSet(access_token="a", refresh_token="r", expires_at=NOW + 60, refresh_expires_at=NOW)
        request = _request_with(token_set)

        assert not is_authenticated(request)
        assert get_session_remaining_time(request, now=NOW) == 0


class TestSessionAccess:

    def test_save_session_removes_unset_fields_only(self):
        request = create_request(session={"oidcState": "abc", "csrf": "keep"})

        save_session(request, SessionData(token_set=TokenSet(access_token="a")))

        assert "oidcState" not in request.session
        assert request.session["csrf"] == "keep"
        assert request.session["tokenSet"]["access_token"] == "a"
        assert get_session(request).token_set.access_token == "a"

    def test_auth_context_is_created_once_per_request(self):
        request = create_request()

        context = get_auth_context(request)
        context.claims = {"sub": "x"}

        assert get_auth_context(request).claims == {"sub": "x"}
        assert get_auth_context(create_request()).claims is None


class TestState:

    def test_generated_states_are_unique_and_url_safe(self):
        states = {generate_state() for _ in range(50)}

        assert len(states) == 50
        for state in states:
            assert len(state) == 32
            assert all(c.isalnum() or c in "-_" for c in state)

    def test_validate_state(self):
        assert validate_state("abc", "abc")
        assert not validate_state("abc", "abd")
        assert not validate_state(None, None)
        assert not validate_state("abc", None)
        assert not validate_state("", "")
