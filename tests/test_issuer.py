"""Unit tests for auth/issuer.py -- issuing, rotating, verifying and revoking tokens.

Covers:
- issue() then verify(): same user id in the claim and the stored session
- refresh() rotation, replay detection and its revoke-everything side effect
- refresh() failures: unknown token, expired session, revoked session, inactive user
- verify() expiry against the injected clock and after revoke()
"""

from __future__ import annotations

from datetime import timedelta

from conftest import create_user

from auth.errors import ErrorCode, Failure
from auth.models import TokenPair
from auth.tokens import claims_user_id


class TestIssue:
    def test_issue_then_verify(self, services, user) -> None:
        """A freshly issued access token verifies and names the issuing user and session."""
        pair = services.issuer.issue(user, user_agent="curl/8.4.0", ip_address="127.0.0.1")
        claims = services.issuer.verify(pair.access_token)
        assert not isinstance(claims, Failure)
        assert claims_user_id(claims) == user.id
        assert claims["sid"] == pair.session_id
        session = services.sessions.get(pair.session_id)
        assert session.user_id == user.id
        assert session.is_active

    def test_refresh_token_is_not_stored_in_clear(self, services, user) -> None:
        pair = services.issuer.issue(user)
        session = services.sessions.get(pair.session_id)
        assert session.refresh_token_hash != pair.refresh_token

    def test_each_login_opens_its_own_session(self, services, user) -> None:
        first = services.issuer.issue(user)
        second = services.issuer.issue(user)
        assert first.session_id != second.session_id
        assert services.sessions.count_active(user.id) == 2

    def test_access_token_expires(self, services, user, clock, settings) -> None:
        pair = services.issuer.issue(user)
        clock.advance(seconds=settings.access_token_expire_seconds + 1)
        result = services.issuer.verify(pair.access_token)
        assert isinstance(result, Failure)
        assert result.code == ErrorCode.token_expired


class TestRefresh:
    def test_refresh_rotates(self, services, user) -> None:
        """refresh(R1) yields a new pair and retires the R1 session."""
        first = services.issuer.issue(user)
        second = services.issuer.refresh(first.refresh_token)
        assert isinstance(second, TokenPair)
        assert second.refresh_token != first.refresh_token
        assert second.session_id != first.session_id
        assert not services.sessions.get(first.session_id).is_active
        assert not isinstance(services.issuer.verify(second.access_token), Failure)

    def test_reuse_detection_revokes_everything(self, services, user) -> None:
        """Login (A1,R1); refresh(R1) -> (A2,R2); refresh(R1) again is reuse; R2 then fails too."""
        a1_r1 = services.issuer.issue(user)
        a2_r2 = services.issuer.refresh(a1_r1.refresh_token)
        assert isinstance(a2_r2, TokenPair)

        replay = services.issuer.refresh(a1_r1.refresh_token)
        assert isinstance(replay, Failure)
        assert replay.code == ErrorCode.token_reuse_detected
        assert services.sessions.count_active(user.id) == 0

        after = services.issuer.refresh(a2_r2.refresh_token)
        assert isinstance(after, Failure)
        assert after.code == ErrorCode.session_revoked

    def test_reuse_leaves_other_users_alone(self, services, user) -> None:
        other = create_user(services, "bystander@example.com")
        services.issuer.issue(other)
        pair = services.issuer.issue(user)
        services.issuer.refresh(pair.refresh_token)
        services.issuer.refresh(pair.refresh_token)
        assert services.sessions.count_active(other.id) == 1

    def test_expired_rotated_token_is_still_reuse(self, services, user, clock, settings) -> None:
        """Replaying a rotated token after its own expiry still ends every session."""
        first = services.issuer.issue(user)
        clock.advance(days=1)
        second = services.issuer.refresh(first.refresh_token)
        assert isinstance(second, TokenPair)

        clock.advance(days=settings.refresh_token_expire_days - 1, seconds=1)
        replay = services.issuer.refresh(first.refresh_token)
        assert isinstance(replay, Failure)
        assert replay.code == ErrorCode.token_reuse_detected
        assert services.sessions.count_active(user.id) == 0

    def test_unknown_refresh_token(self, services) -> None:
        result = services.issuer.refresh("never-issued")
        assert isinstance(result, Failure)
        assert result.code == ErrorCode.invalid_token

    def test_expired_refresh_token(self, services, user, clock, settings) -> None:
        pair = services.issuer.issue(user)
        clock.advance(days=settings.refresh_token_expire_days, seconds=1)
        result = services.issuer.refresh(pair.refresh_token)
        assert isinstance(result, Failure)
        assert result.code == ErrorCode.token_expired

    def test_logged_out_session_cannot_refresh(self, services, user) -> None:
        """A session ended by logout reports session_revoked, not reuse."""
        pair = services.issuer.issue(user)
        services.issuer.revoke(pair.access_token)
        result = services.issuer.refresh(pair.refresh_token)
        assert isinstance(result, Failure)
        assert result.code == ErrorCode.session_revoked

    def test_inactive_user_cannot_refresh(self, services, user) -> None:
        pair = services.issuer.issue(user)
        services.users.update_user(user.id, is_active=False)
        result = services.issuer.refresh(pair.refresh_token)
        assert isinstance(result, Failure)
        assert result.code == ErrorCode.unauthenticated


class TestRevoke:
    def test_revoked_token_fails_verify_immediately(self, services, user) -> None:
        pair = services.issuer.issue(user)
        assert services.issuer.revoke(pair.access_token) is None
        assert services.ledger.is_revoked(pair.access_token)
        result = services.issuer.verify(pair.access_token)
        assert isinstance(result, Failure)
        assert result.code == ErrorCode.session_revoked
        assert services.sessions.get(pair.session_id).revoked_reason == "logout"

    def test_revoke_keeps_entry_until_token_expiry(self, services, user, clock, settings) -> None:
        """The blacklist entry lives exactly as long as the token it blocks."""
        pair = services.issuer.issue(user)
        services.issuer.revoke(pair.access_token)
        clock.advance(seconds=settings.access_token_expire_seconds - 1)
        assert services.ledger.sweep() == 0
        clock.advance(seconds=2)
        assert services.ledger.sweep() == 1

    def test_revoke_rejects_forged_token(self, services) -> None:
        result = services.issuer.revoke("forged.token.value")
        assert isinstance(result, Failure)
        assert result.code == ErrorCode.invalid_token

    def test_revoke_twice_is_harmless(self, services, user) -> None:
        pair = services.issuer.issue(user)
        assert services.issuer.revoke(pair.access_token) is None
        assert services.issuer.revoke(pair.access_token) is None
        assert services.sessions.get(pair.session_id).revoked_reason == "logout"

    def test_refresh_ttl_matches_settings(self, services, user, settings, clock) -> None:
        pair = services.issuer.issue(user)
        session = services.sessions.get(pair.session_id)
        expected = clock() + timedelta(days=settings.refresh_token_expire_days)
        assert session.expires_at.startswith(expected.isoformat()[:19])
