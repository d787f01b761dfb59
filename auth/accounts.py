"""
auth/accounts.py -- Account lifecycle: registration, email verification,
password reset and password change.

Security:
  forgot_password() reports success whether or not the email is registered,
  so the endpoint cannot be used to enumerate accounts.

  Verification and reset tokens are single-use: the fields are cleared as
  soon as the flow completes. Changing or resetting a password revokes every
  session of the user, forcing re-authentication on all devices.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from auth.errors import ErrorCode, Failure
from auth.mail import Mailer
from auth.models import User
from auth.sessions import SessionRegistry
from auth.store import UserStore
from auth.tokens import generate_one_time_token, hash_password, verify_password
from core.clock import Clock, to_iso, utc_now
from core.config import Settings

logger = logging.getLogger("gatehouse.auth")


class AccountService:
    def __init__(
        self,
        settings: Settings,
        users: UserStore,
        sessions: SessionRegistry,
        mailer: Mailer,
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings
        self.users = users
        self.sessions = sessions
        self.mailer = mailer
        self._clock = clock

    def _expiry(self, hours: int) -> str:
        return to_iso(self._clock() + timedelta(hours=hours))

    def _hash(self, password: str) -> str:
        return hash_password(password, rounds=self.settings.bcrypt_rounds)

    # ------------------------------------------------------------------
    # Registration and verification
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, first_name: str = "", last_name: str = "") -> User | Failure:
        """Create an unverified account and send its verification token."""
        if self.users.get_by_email(email) is not None:
            return Failure(ErrorCode.conflict, "An account with that email already exists.")
        token = generate_one_time_token()
        user = User(
            email=email,
            hashed_password=self._hash(password),
            first_name=first_name,
            last_name=last_name,
            email_verification_token=token,
            email_verification_expires=self._expiry(self.settings.email_verification_expire_hours),
        )
        try:
            user_id = self.users.create_user(user)
        except IntegrityError:
            # A concurrent registration with the same email won the race.
            return Failure(ErrorCode.conflict, "An account with that email already exists.")
        created = self.users.get_by_id(user_id)
        self.mailer.send_verification(created.email, token)
        logger.info("Registered user %s", user_id)
        return created

    def verify_email(self, token: str) -> User | Failure:
        user = self.users.get_by_verification_token(token)
        if user is None:
            return Failure(ErrorCode.invalid_token, "Invalid verification token.")
        if user.is_email_verified:
            return user
        if not user.email_verification_expires or user.email_verification_expires <= to_iso(self._clock()):
            return Failure(ErrorCode.token_expired, "Verification token has expired.")
        self.users.update_user(
            user.id,
            is_email_verified=True,
            email_verification_token=None,
            email_verification_expires=None,
        )
        logger.info("Verified email for user %s", user.id)
        return self.users.get_by_id(user.id)

    def resend_verification(self, user_id: int) -> Failure | None:
        """Issue a fresh verification token. Already-verified accounts are a no-op."""
        user = self.users.get_by_id(user_id)
        if user is None:
            return Failure(ErrorCode.not_found, "User not found.")
        if user.is_email_verified:
            return None
        token = generate_one_time_token()
        self.users.update_user(
            user.id,
            email_verification_token=token,
            email_verification_expires=self._expiry(self.settings.email_verification_expire_hours),
        )
        self.mailer.send_verification(user.email, token)
        return None

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Start a reset for email if it belongs to an active account. Always returns quietly."""
        user = self.users.get_by_email(email)
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive account")
            return
        token = generate_one_time_token()
        self.users.update_user(
            user.id,
            password_reset_token=token,
            password_reset_expires=self._expiry(self.settings.password_reset_expire_hours),
        )
        self.mailer.send_password_reset(user.email, token)

    def reset_password(self, token: str, new_password: str) -> Failure | None:
        user = self.users.get_by_reset_token(token)
        if user is None:
            return Failure(ErrorCode.invalid_token, "Invalid password reset token.")
        if not user.password_reset_expires or user.password_reset_expires <= to_iso(self._clock()):
            return Failure(ErrorCode.token_expired, "Password reset token has expired.")
        self.users.update_user(
            user.id,
            hashed_password=self._hash(new_password),
            password_reset_token=None,
            password_reset_expires=None,
        )
        self.sessions.revoke_all(user.id, "password_reset")
        logger.info("Password reset for user %s", user.id)
        return None

    def change_password(self, user_id: int, current_password: str, new_password: str) -> Failure | None:
        user = self.users.get_by_id(user_id)
        if user is None:
            return Failure(ErrorCode.not_found, "User not found.")
        if not verify_password(current_password, user.hashed_password):
            return Failure(ErrorCode.bad_credentials, "Current password is incorrect.")
        self.users.update_user(user.id, hashed_password=self._hash(new_password))
        self.sessions.revoke_all(user.id, "password_change")
        logger.info("Password changed for user %s", user.id)
        return None
