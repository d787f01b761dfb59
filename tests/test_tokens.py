"""Unit tests for auth/tokens.py -- password hashing, JWT helpers and opaque tokens.

Covers:
- bcrypt hash/verify, including the 72-byte truncation applied on both sides
- authenticate_user() for unknown email, wrong password, inactive user, mixed-case email
- create_access_token() / decode_access_token() claim shape and tamper rejection
- hash_token() determinism and key dependence
"""

from __future__ import annotations

from datetime import datetime, timezone

from conftest import TEST_BCRYPT_ROUNDS, TEST_PASSWORD, TEST_SECRET, create_user

from auth.tokens import (
    authenticate_user,
    claims_user_id,
    create_access_token,
    decode_access_token,
    generate_one_time_token,
    generate_refresh_token,
    hash_password,
    hash_token,
    verify_password,
)

_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class TestPasswordHashing:
    def test_hash_and_verify(self) -> None:
        """A password verifies against its own hash and not against another password."""
        hashed = hash_password("s3cret-password", rounds=TEST_BCRYPT_ROUNDS)
        assert hashed != "s3cret-password"
        assert verify_password("s3cret-password", hashed)
        assert not verify_password("other-password", hashed)

    def test_long_passwords_truncate_consistently(self) -> None:
        """Inputs over 72 bytes hash without error and verify on the shared 72-byte prefix."""
        long_pw = "a" * 100
        hashed = hash_password(long_pw, rounds=TEST_BCRYPT_ROUNDS)
        assert verify_password(long_pw, hashed)
        assert verify_password("a" * 72 + "different-tail", hashed)

    def test_malformed_hash_is_mismatch(self) -> None:
        """A corrupt stored hash must read as a failed check, not an exception."""
        assert verify_password("anything", "not-a-bcrypt-hash") is False


class TestAuthenticateUser:
    def test_valid_credentials(self, services) -> None:
        """Correct email and password return the user."""
        created = create_user(services, "bob@example.com")
        user = authenticate_user(services.users, "bob@example.com", TEST_PASSWORD, rounds=TEST_BCRYPT_ROUNDS)
        assert user is not None
        assert user.id == created.id

    def test_email_is_case_insensitive(self, services) -> None:
        """Login email matching ignores case."""
        create_user(services, "carol@example.com")
        user = authenticate_user(services.users, "Carol@Example.COM", TEST_PASSWORD, rounds=TEST_BCRYPT_ROUNDS)
        assert user is not None

    def test_unknown_email(self, services) -> None:
        assert authenticate_user(services.users, "nobody@example.com", TEST_PASSWORD, rounds=TEST_BCRYPT_ROUNDS) is None

    def test_wrong_password(self, services) -> None:
        create_user(services, "dave@example.com")
        assert authenticate_user(services.users, "dave@example.com", "wrong-password", rounds=TEST_BCRYPT_ROUNDS) is None

    def test_inactive_user_rejected(self, services) -> None:
        """A deactivated account cannot log in even with the right password."""
        create_user(services, "erin@example.com", active=False)
        assert authenticate_user(services.users, "erin@example.com", TEST_PASSWORD, rounds=TEST_BCRYPT_ROUNDS) is None


class TestAccessTokens:
    def test_round_trip_claims(self) -> None:
        """Decoded claims carry the string subject, email and session id."""
        token, expires_at = create_access_token(7, "a@example.com", 42, TEST_SECRET, _NOW, 900)
        claims = decode_access_token(token, TEST_SECRET)
        assert claims is not None
        assert claims["sub"] == "7"
        assert claims_user_id(claims) == 7
        assert claims["sid"] == 42
        assert claims["email"] == "a@example.com"
        assert claims["exp"] == int(expires_at.timestamp())
        assert (expires_at - _NOW).total_seconds() == 900

    def test_each_token_has_unique_jti(self) -> None:
        first, _ = create_access_token(1, "a@example.com", 1, TEST_SECRET, _NOW, 900)
        second, _ = create_access_token(1, "a@example.com", 1, TEST_SECRET, _NOW, 900)
        assert first != second
        assert decode_access_token(first, TEST_SECRET)["jti"] != decode_access_token(second, TEST_SECRET)["jti"]

    def test_expired_token_still_decodes(self) -> None:
        """Expiry is the caller's check; decode only verifies signature and shape."""
        token, _ = create_access_token(1, "a@example.com", 1, TEST_SECRET, datetime(2000, 1, 1, tzinfo=timezone.utc), 60)
        assert decode_access_token(token, TEST_SECRET) is not None

    def test_wrong_secret_rejected(self) -> None:
        token, _ = create_access_token(1, "a@example.com", 1, TEST_SECRET, _NOW, 900)
        assert decode_access_token(token, "another-secret-key-of-sufficient-length!!") is None

    def test_tampered_token_rejected(self) -> None:
        """A payload from one token spliced onto another token's signature fails verification."""
        token, _ = create_access_token(1, "a@example.com", 1, TEST_SECRET, _NOW, 900)
        forged, _ = create_access_token(2, "admin@example.com", 1, TEST_SECRET, _NOW, 900)
        header, _payload, signature = token.split(".")
        tampered = ".".join([header, forged.split(".")[1], signature])
        assert decode_access_token(tampered, TEST_SECRET) is None

    def test_garbage_rejected(self) -> None:
        assert decode_access_token("not.a.jwt", TEST_SECRET) is None
        assert decode_access_token("", TEST_SECRET) is None


class TestOpaqueTokens:
    def test_hash_token_is_deterministic_and_keyed(self) -> None:
        """Same input and key give the same digest; a different key gives a different one."""
        assert hash_token("abc", TEST_SECRET) == hash_token("abc", TEST_SECRET)
        assert hash_token("abc", TEST_SECRET) != hash_token("abc", TEST_SECRET + "x")
        assert len(hash_token("abc", TEST_SECRET)) == 64

    def test_generated_tokens_are_unique(self) -> None:
        assert generate_refresh_token() != generate_refresh_token()
        one_time = generate_one_time_token()
        assert len(one_time) == 64
        int(one_time, 16)
