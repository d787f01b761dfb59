"""
api/services.py -- Object graph assembly.

build_services() wires every store and service from one Engine, one Settings
and one Clock. api/main.py stores the result on app.state.services; main.py
(the CLI) and the tests build their own. Nothing below this module reads
global configuration.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.engine import Engine

from auth.accounts import AccountService
from auth.blacklist import RevocationLedger
from auth.guard import AuthorizationGuard
from auth.issuer import TokenIssuer
from auth.mail import LogMailer, Mailer
from auth.sessions import SessionRegistry
from auth.store import UserStore
from cache.store import RevocationCache
from core.clock import Clock, utc_now
from core.config import Settings
from rbac.store import PermissionGraph


@dataclass
class Services:
    settings: Settings
    engine: Engine
    users: UserStore
    sessions: SessionRegistry
    ledger: RevocationLedger
    graph: PermissionGraph
    issuer: TokenIssuer
    guard: AuthorizationGuard
    accounts: AccountService
    clock: Clock

    def sweep(self) -> dict[str, int]:
        """Remove expired blacklist entries and expired or long-inactive sessions."""
        return {
            "blacklist": self.ledger.sweep(),
            "expired_sessions": self.sessions.cleanup_expired(),
            "inactive_sessions": self.sessions.cleanup_inactive(self.settings.inactive_session_retention_days),
        }

    def close(self) -> None:
        self.engine.dispose()


def build_services(engine: Engine, settings: Settings, clock: Clock = utc_now, mailer: Mailer | None = None) -> Services:
    users = UserStore(engine, clock)
    sessions = SessionRegistry(engine, clock)
    ledger = RevocationLedger(
        engine,
        settings.secret_key,
        clock,
        cache=RevocationCache(settings.revocation_cache_size),
    )
    graph = PermissionGraph(engine, clock)
    issuer = TokenIssuer(settings, users, sessions, ledger, clock)
    guard = AuthorizationGuard(issuer, users, graph, rbac_enabled=settings.rbac_enabled)
    accounts = AccountService(settings, users, sessions, mailer or LogMailer(debug=settings.debug), clock)
    return Services(
        settings=settings,
        engine=engine,
        users=users,
        sessions=sessions,
        ledger=ledger,
        graph=graph,
        issuer=issuer,
        guard=guard,
        accounts=accounts,
        clock=clock,
    )
