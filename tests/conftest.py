"""Global test fixtures and shared test infrastructure.

Provides:
- Environment variable defaults (must be set before any app import)
- An in-memory SQLite database per test (aiosqlite, StaticPool)
- RecordingDelivery, a delivery channel that keeps every outbound email
- FixedClock and a deterministic WorkflowContext
- Intake field-map factories and group setup helpers
- An httpx AsyncClient wired to the app with database/context overrides
"""

from __future__ import annotations

import os

# Environment defaults: must be set before importing the app, which triggers
# pydantic Settings validation on import.
os.environ.setdefault("SECRET_KEY", "test-secret-key-boot")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "memory://")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("EMAIL_BACKEND", "log")

import random
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from loanflow import models  # noqa: F401  (registers every table on Base.metadata)
from loanflow.api import deps
from loanflow.db.base import Base
from loanflow.db.session import get_db
from loanflow.main import app
from loanflow.models.finance_officer import FinanceOfficer
from loanflow.models.loan_group import LoanGroup
from loanflow.models.notification_delivery import NotificationDelivery
from loanflow.schemas.intake import applicant_from_fields, enrollment_from_fields
from loanflow.services import intake, loan_workflow
from loanflow.services.deep_links import DeepLinkGenerator
from loanflow.services.delivery import DeliveryChannel, OutboundEmail
from loanflow.services.workflow_context import WorkflowConfig, WorkflowContext
from loanflow.services.workflow_errors import DeliveryError


FORM_URL = "https://docs.example.com/forms/d/e/loan-form/viewform"
START = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

APPLICANT_EMAIL = "ada@coop.test"
GUARANTOR1_EMAIL = "ben@coop.test"
GUARANTOR2_EMAIL = "cy@coop.test"
OFFICER_EMAIL = "fola@coop.test"


# ---------------------------------------------------------------------------
# Delivery and clock doubles
# ---------------------------------------------------------------------------


class RecordingDelivery(DeliveryChannel):
    """Keeps sent emails in memory; addresses in ``failing`` raise DeliveryError."""

    provider = "recording"

    def __init__(self) -> None:
        super().__init__(sender_name="Test Finance", regards="", footer="")
        self.sent: list[OutboundEmail] = []
        self.failing: set[str] = set()

    async def send(self, message: OutboundEmail) -> str | None:
        if message.to in self.failing:
            raise DeliveryError("provider unavailable", details={"to": message.to})
        self.sent.append(message)
        return f"msg-{len(self.sent)}"

    def to(self, address: str) -> list[OutboundEmail]:
        return [message for message in self.sent if message.to == address]

    def subjects(self) -> list[str]:
        return [message.subject for message in self.sent]

    def clear(self) -> None:
        self.sent.clear()


class ClaimingDelivery(RecordingDelivery):
    """Another writer claims ``claim`` in the ledger while the first email is out."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], **claim: Any) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._claim: dict[str, Any] | None = claim

    async def send(self, message: OutboundEmail) -> str | None:
        if self._claim is not None:
            claim, self._claim = self._claim, None
            async with self._session_factory() as other:
                other.add(NotificationDelivery(status="SENT", attempts=1, **claim))
                await other.commit()
        return await super().send(message)


class FixedClock:
    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: Any) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


# ---------------------------------------------------------------------------
# Field-map factories
# ---------------------------------------------------------------------------


def enrollment_fields(
    *,
    applicant_id: str = "C100",
    guarantor1_id: str = "C200",
    guarantor2_id: str = "C300",
    **overrides: Any,
) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "Your Cooperator ID": applicant_id,
        "Your Name": "Ada Obi",
        "Your Phone": "08010000001",
        "Your Email": APPLICANT_EMAIL,
        "Guarantor 1 Cooperator ID": guarantor1_id,
        "Guarantor 1 Name": "Ben Eze",
        "Guarantor 1 Phone": "08010000002",
        "Guarantor 1 Email": GUARANTOR1_EMAIL,
        "Guarantor 2 Cooperator ID": guarantor2_id,
        "Guarantor 2 Name": "Cy Uche",
        "Guarantor 2 Phone": "08010000003",
        "Guarantor 2 Email": GUARANTOR2_EMAIL,
    }
    fields.update(overrides)
    return fields


def applicant_fields(group_id: str | None, *, cooperator_id: str = "C100", **overrides: Any) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "Role": "Applicant",
        "Loan ID": group_id,
        "Cooperator ID": cooperator_id,
        "Name": "Ada Obi",
        "Email": APPLICANT_EMAIL,
        "Phone": "08010000001",
        "Home Address": "12 Palm Close",
        "Loan Amount (Figures)": "250000",
        "Loan Amount (Words)": "Two hundred and fifty thousand",
        "Repayment Period": "12 months",
        "Bank Name": "Coop Bank",
        "Account Name": "Ada Obi",
        "Account Number": "0123456789",
        "Guarantor 1 Cooperator ID": "C200",
        "Guarantor 1 Email": GUARANTOR1_EMAIL,
        "Guarantor 2 Cooperator ID": "C300",
        "Guarantor 2 Email": GUARANTOR2_EMAIL,
    }
    fields.update(overrides)
    return fields


def guarantor_fields(group_id: str, *, slot: int = 1, **overrides: Any) -> dict[str, Any]:
    email = GUARANTOR1_EMAIL if slot == 1 else GUARANTOR2_EMAIL
    fields: dict[str, Any] = {
        "Role": "Guarantor",
        "Loan ID": group_id,
        "Email": email,
        f"Guarantor {slot} Cooperator ID": "C200" if slot == 1 else "C300",
        f"Guarantor {slot} Name": "Ben Eze" if slot == 1 else "Cy Uche",
        f"Guarantor {slot} Phone": "08020000000",
        f"Guarantor {slot} Email": email,
    }
    fields.update(overrides)
    return fields


def officer_review_fields(group_id: str, *, status: str = "Approved", **overrides: Any) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "Role": "Finance Officer",
        "Loan ID": group_id,
        "Approver Name": "Fola Ade",
        "Approver ID": "FO1",
        "Approver Email": OFFICER_EMAIL,
        "Approver Phone": "08030000000",
        "Status": status,
        "Comments": "Balances verified",
        "Applicant Balance": "40000",
        "Applicant Rating": "A",
    }
    fields.update(overrides)
    return fields


# ---------------------------------------------------------------------------
# Setup helpers
# ---------------------------------------------------------------------------


async def add_officer(
    db: AsyncSession,
    *,
    officer_id: str = "FO1",
    name: str = "Fola Ade",
    email: str = OFFICER_EMAIL,
    phone: str = "08030000000",
    is_active: bool = True,
) -> FinanceOfficer:
    officer = FinanceOfficer(name=name, officer_id=officer_id, email=email, phone=phone, is_active=is_active)
    db.add(officer)
    await db.commit()
    return officer


async def enroll_group(db: AsyncSession, ctx: WorkflowContext, **overrides: Any) -> LoanGroup:
    return await intake.enroll(db, ctx, enrollment_from_fields(enrollment_fields(**overrides)))


async def submitted_group(db: AsyncSession, ctx: WorkflowContext) -> LoanGroup:
    """Enrolled, officer-assigned, notified and applicant-submitted group."""
    await add_officer(db)
    group = await enroll_group(db, ctx)
    await loan_workflow.notify_assignment(db, ctx, group.id)
    return await loan_workflow.record_applicant_submission(
        db, ctx, applicant_from_fields(applicant_fields(group.id))
    )


# ---------------------------------------------------------------------------
# Shared pytest fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _disable_rate_limiter():
    limiter = app.state.limiter
    original = limiter.enabled
    limiter.enabled = False
    yield
    limiter.enabled = original


@pytest_asyncio.fixture
async def engine():
    test_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def deep_links() -> DeepLinkGenerator:
    return DeepLinkGenerator(
        FORM_URL,
        loan_entry="entry.1001",
        role_entry="entry.1002",
        email_entry="entry.1003",
    )


@pytest.fixture
def workflow_config() -> WorkflowConfig:
    return WorkflowConfig()


@pytest.fixture
def ctx(workflow_config, delivery, deep_links, clock) -> WorkflowContext:
    return WorkflowContext(
        config=workflow_config,
        delivery=delivery,
        deep_links=deep_links,
        clock=clock,
        rng=random.Random(0),
        actor="test",
    )


@pytest_asyncio.fixture
async def client(session_factory, ctx):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_workflow_context] = lambda: ctx
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Key": "test-admin-key"}
