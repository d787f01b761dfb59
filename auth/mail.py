"""
auth/mail.py -- Outbound account mail.

AccountService depends on the Mailer protocol only. LogMailer is the default:
it writes the message to the log, which is what a development deployment
wants. A real SMTP or API-backed sender implements the same two methods.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger("gatehouse.mail")


class Mailer(Protocol):
    def send_verification(self, email: str, token: str) -> None: ...

    def send_password_reset(self, email: str, token: str) -> None: ...


class LogMailer:
    """Mailer that logs instead of sending. Tokens are logged only in debug mode."""

    def __init__(self, debug: bool = False) -> None:
        self.debug = debug

    def _deliver(self, kind: str, email: str, token: str) -> None:
        if self.debug:
            logger.info("%s mail for %s (token=%s)", kind, email, token)
        else:
            logger.info("%s mail for %s", kind, email)

    def send_verification(self, email: str, token: str) -> None:
        self._deliver("Verification", email, token)

    def send_password_reset(self, email: str, token: str) -> None:
        self._deliver("Password reset", email, token)
