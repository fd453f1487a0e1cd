"""
Pytest fixtures for the access kernel test suite.

Provides:
- Database sessions with per-test rollback
- A real-commit session factory for concurrency tests
- Actors, collaborators, services and request factories
- Structured log capture

Environment Variables:
- DATABASE_URL: SQLAlchemy URL of the test database.  Defaults to an
  in-memory SQLite database; set a ``postgresql://`` URL to run the suite
  (and the concurrency tests) against PostgreSQL.
"""

import json
import logging
import os
import threading
from datetime import timedelta
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from access_kernel.db.base import Base
from access_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)
from access_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from access_kernel.domain.clock import DeterministicClock
from access_kernel.domain.collaborators import (
    Actor,
    ActorRole,
    StaticActorDirectory,
    StaticBlacklist,
)
from access_kernel.domain.request import ApprovalTerms, RequestDraft, RequestKind
from access_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from access_kernel.selectors.audit_trail import AuditTrailSelector
from access_kernel.services.approval_workflow import ApprovalWorkflow
from access_kernel.services.credential_service import CredentialService
from access_kernel.services.verification_gate import VerificationGate

DEFAULT_DATABASE_URL = "sqlite://"

MERCHANT_ID = UUID("00000000-0000-0000-0000-00000000a001")
OTHER_MERCHANT_ID = UUID("00000000-0000-0000-0000-00000000a002")

BLACKLISTED_PHONE = "+15550000666"
BLACKLISTED_NAME = "Mallory Banned"


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as exercising PostgreSQL-specific behaviour"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture access_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, verification_gate):
            verification_gate.verify(...)
            logs = captured_logs()
            assert any(r["message"] == "verification_denied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("access_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(
        get_database_url(), echo=False,
        pool_size=30, max_overflow=20, pool_timeout=10,
    )
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end.

    Immutability listeners are registered once and remain active.
    """
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


def _truncate_all_tables(engine):
    """Delete every row; used by tests that really commit."""
    table_names = [t.name for t in reversed(Base.metadata.sorted_tables)]
    with engine.connect() as conn:
        if is_postgres(engine):
            conn.execute(text("TRUNCATE " + ", ".join(table_names) + " CASCADE"))
        else:
            for name in table_names:
                conn.execute(text(f"DELETE FROM {name}"))
        conn.commit()


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    Uses the SQLAlchemy 2.0 ``join_transaction_mode`` pattern:
    - Opens a dedicated connection with an outer transaction
    - Creates a session that *joins* the outer transaction
    - Any ``session.commit()`` inside the test releases a savepoint
    - At teardown the outer transaction is rolled back, undoing ALL data
      changes made during the test
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Concurrency testing fixtures (real commits)
# =============================================================================


@pytest.fixture(scope="function")
def concurrent_engine(db_engine, db_tables, tmp_path):
    """Engine whose connections really run in parallel.

    PostgreSQL reuses the session engine.  An in-memory SQLite database
    lives on a single shared connection, so SQLite runs get a file
    database of their own.
    """
    if is_postgres(db_engine):
        yield db_engine
        _truncate_all_tables(db_engine)
        return

    eng = build_engine(f"sqlite:///{tmp_path / 'concurrency.db'}")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture(scope="function")
def session_factory(concurrent_engine):
    """Provide a tracked session factory for creating sessions in concurrent threads.

    Each thread should create its own session using this factory.
    On teardown new sessions are refused and every tracked session is
    rolled back and closed.
    """
    if is_postgres(concurrent_engine):
        factory = get_session_factory()
    else:
        factory = sessionmaker(bind=concurrent_engine, expire_on_commit=False)
    created_sessions = []
    lock = threading.Lock()
    closed = False

    def tracked_factory() -> Session:
        with lock:
            if closed:
                raise RuntimeError("session_factory closed (fixture teardown)")
            s = factory()
            created_sessions.append(s)
            return s

    yield tracked_factory

    with lock:
        closed = True

    for s in created_sessions:
        if s.is_active:
            s.rollback()
        s.close()


# =============================================================================
# Clock, actors and collaborators
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def merchant_id() -> UUID:
    return MERCHANT_ID


@pytest.fixture
def other_merchant_id() -> UUID:
    return OTHER_MERCHANT_ID


@pytest.fixture
def tenant_admin() -> Actor:
    return Actor(actor_id=uuid4(), roles=frozenset({ActorRole.TENANT_ADMIN}))


@pytest.fixture
def merchant_admin() -> Actor:
    return Actor(
        actor_id=uuid4(),
        roles=frozenset({ActorRole.MERCHANT_ADMIN}),
        merchant_id=MERCHANT_ID,
    )


@pytest.fixture
def other_merchant_admin() -> Actor:
    return Actor(
        actor_id=uuid4(),
        roles=frozenset({ActorRole.MERCHANT_ADMIN}),
        merchant_id=OTHER_MERCHANT_ID,
    )


@pytest.fixture
def security_officer() -> Actor:
    return Actor(actor_id=uuid4(), roles=frozenset({ActorRole.SECURITY}))


@pytest.fixture
def checkpoint_id() -> UUID:
    """Operator or device at the checkpoint; not in the actor directory."""
    return uuid4()


@pytest.fixture
def actor_directory(tenant_admin, merchant_admin, other_merchant_admin, security_officer):
    return StaticActorDirectory(
        [tenant_admin, merchant_admin, other_merchant_admin, security_officer]
    )


@pytest.fixture
def blacklist():
    return StaticBlacklist(phones=[BLACKLISTED_PHONE], names=[BLACKLISTED_NAME])


@pytest.fixture
def blacklisted_requester() -> tuple[str, str]:
    """(name, phone) both on the blacklist."""
    return BLACKLISTED_NAME, BLACKLISTED_PHONE


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def credential_service(session, actor_directory, deterministic_clock):
    return CredentialService(session, actor_directory, clock=deterministic_clock)


@pytest.fixture
def approval_workflow(session, credential_service, blacklist, actor_directory, deterministic_clock):
    return ApprovalWorkflow(
        session,
        credential_service,
        blacklist,
        actor_directory,
        clock=deterministic_clock,
    )


@pytest.fixture
def verification_gate(session, deterministic_clock):
    return VerificationGate(session, clock=deterministic_clock)


@pytest.fixture
def audit_trail(session):
    return AuditTrailSelector(session)


# =============================================================================
# Request factories
# =============================================================================


@pytest.fixture
def visitor_draft(deterministic_clock):
    """Factory for visitor drafts with a valid window starting in one hour."""
    counter = iter(range(1, 10_000))

    def _make(**overrides) -> RequestDraft:
        now = deterministic_clock.now()
        n = next(counter)
        fields = dict(
            kind=RequestKind.VISITOR,
            requester_name=f"Visitor {n}",
            contact_phone=f"+1555{n:07d}",
            purpose="Supplier meeting",
            merchant_id=MERCHANT_ID,
            visit_start=now + timedelta(hours=1),
            visit_end=now + timedelta(hours=9),
            id_document=f"P{n:06d}",
            company="Acme Supplies",
        )
        fields.update(overrides)
        return RequestDraft(**fields)

    return _make


@pytest.fixture
def employee_draft():
    """Factory for employee drafts (no visit window)."""
    counter = iter(range(1, 10_000))

    def _make(**overrides) -> RequestDraft:
        n = next(counter)
        fields = dict(
            kind=RequestKind.EMPLOYEE,
            requester_name=f"Employee {n}",
            contact_phone=f"+1666{n:07d}",
            purpose="Store staff",
            merchant_id=MERCHANT_ID,
        )
        fields.update(overrides)
        return RequestDraft(**fields)

    return _make


@pytest.fixture
def submit_visitor(approval_workflow, visitor_draft):
    """Submit a visitor request and return the stored snapshot."""

    def _submit(**overrides):
        return approval_workflow.submit(visitor_draft(**overrides))

    return _submit


@pytest.fixture
def approved_visitor(approval_workflow, submit_visitor, merchant_admin):
    """Submit and approve a visitor request; returns the ApprovalResult."""

    def _approve(terms: ApprovalTerms | None = None, **overrides):
        request = submit_visitor(**overrides)
        return approval_workflow.approve(request.request_id, merchant_admin.actor_id, terms)

    return _approve
