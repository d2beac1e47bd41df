"""Shared test helpers: in-memory database, simulated clock and service wiring."""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import hash_password
from app.models import Base, Role, User
from app.scripts.seed_roles import seed_system_roles
from app.services.audit import PermissionAuditLogger
from app.services.delegation import DelegationLedger
from app.services.permission_context import PermissionContextService
from app.services.role_resolver import RoleResolver
from app.services.store import RecordStore
from app.services.token_service import TokenConfig, TokenService

SECRET = "test-signing-secret-that-is-long-enough-for-hs256"
# Monday 10:00 UTC, inside default business hours.
START = datetime(2025, 3, 3, 10, 0, tzinfo=UTC)
PASSWORD = "correct-horse-battery"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


def make_session() -> Session:
    """Fresh in-memory database with the system roles seeded."""
    session = sessionmaker(bind=make_engine(), autoflush=False)()
    seed_system_roles(session)
    return session


def make_user(
    session: Session,
    role_name: str,
    username: str | None = None,
    password: str | None = None,
    **fields,
) -> User:
    role = session.query(Role).filter(Role.name == role_name).one()
    username = username or f"{role_name}-{session.query(User).count() + 1}"
    values = {
        "email": f"{username}@example.com",
        "username": username,
        "password_hash": hash_password(password, rounds=4) if password else None,
        "role_id": role.id,
        "oauth_accounts": [],
        "granted_permissions": [],
        "denied_permissions": [],
        "context_memberships": [],
    }
    values.update(fields)
    user = User(**values)
    session.add(user)
    session.commit()
    return user


@dataclass
class Services:
    store: RecordStore
    resolver: RoleResolver
    audit: PermissionAuditLogger
    tokens: TokenService
    ledger: DelegationLedger
    contexts: PermissionContextService
    clock: FakeClock


def token_config(**overrides) -> TokenConfig:
    values = {"signing_key": SECRET, "verification_key": SECRET}
    values.update(overrides)
    return TokenConfig(**values)


def build_services(session: Session, clock: FakeClock | None = None) -> Services:
    clock = clock or FakeClock()
    store = RecordStore(session)
    resolver = RoleResolver(store, clock=clock)
    audit = PermissionAuditLogger(store, clock=clock)
    return Services(
        store=store,
        resolver=resolver,
        audit=audit,
        tokens=TokenService(token_config(), store, resolver, audit, clock=clock),
        ledger=DelegationLedger(store, resolver, audit, clock=clock),
        contexts=PermissionContextService(store, audit, clock=clock),
        clock=clock,
    )
