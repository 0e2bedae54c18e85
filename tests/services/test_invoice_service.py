"""Tests for invoice creation, status changes and dashboard figures."""

from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.invoicing.calculator import LineItemInput
from src.models import (
    ApprovalStatus,
    AuditAction,
    AuditLog,
    Client,
    DueDateType,
    InvoiceStatus,
    User,
    UserRoleType,
)
from src.orchestration import TransitionNotAllowed
from src.services.invoices import (
    InvoiceDraft,
    InvoiceNotFoundError,
    InvoicePermissionError,
    InvoiceStateError,
    InvoiceValidationError,
    change_status,
    create_invoice,
    get_dashboard_stats,
    get_invoice,
    late_payment_summary,
    list_invoices,
    mark_overdue_invoices,
)
from src.services.permissions import assign_role


@pytest_asyncio.fixture
async def owner(db_session: AsyncSession) -> User:
    user = User(email="jan@bakkerij-jansen.nl", password_hash="x")
    db_session.add(user)
    await db_session.flush()
    await assign_role(db_session, user.id, UserRoleType.USER)
    return user


@pytest_asyncio.fixture
async def approved_client(db_session: AsyncSession, owner: User) -> Client:
    client = Client(
        user_id=owner.id,
        name="Anna de Vries",
        email="anna@devries-advies.nl",
        approval_status=ApprovalStatus.APPROVED,
        can_create_invoices=True,
    )
    db_session.add(client)
    await db_session.flush()
    return client


def _draft(client: Client, **overrides) -> InvoiceDraft:
    values = {
        "client_id": client.id,
        "items": [
            LineItemInput(description="Advieswerk maart", quantity=Decimal("10"), rate=Decimal("85")),
            LineItemInput(description="Workshop", quantity=Decimal("1"), rate=Decimal("150")),
        ],
        "issue_date": date(2025, 3, 1),
    }
    values.update(overrides)
    return InvoiceDraft(**values)


@pytest.mark.asyncio
async def test_create_invoice(
    db_session: AsyncSession, owner: User, approved_client: Client
) -> None:
    invoice = await create_invoice(db_session, owner.id, _draft(approved_client))

    assert invoice.invoice_number == "INV-2025-0001"
    assert invoice.status == InvoiceStatus.DRAFT
    assert invoice.subtotal == Decimal("1000.00")
    assert invoice.btw_amount == Decimal("210.00")
    assert invoice.total_amount == Decimal("1210.00")
    assert invoice.due_date == date(2025, 3, 15)
    assert [item.position for item in invoice.items] == [0, 1]
    assert approved_client.total_invoiced == Decimal("1210.00")

    second = await create_invoice(
        db_session, owner.id, _draft(approved_client, btw_rate=9)
    )
    assert second.invoice_number == "INV-2025-0002"
    assert second.btw_amount == Decimal("90.00")


@pytest.mark.asyncio
async def test_taken_invoice_number_is_skipped(
    db_session: AsyncSession, owner: User, approved_client: Client
) -> None:
    first = await create_invoice(db_session, owner.id, _draft(approved_client))
    # another request already claimed the number this one would count to
    first.invoice_number = "INV-2025-0002"
    await db_session.flush()

    second = await create_invoice(db_session, owner.id, _draft(approved_client))

    assert second.invoice_number == "INV-2025-0003"
    assert first.invoice_number == "INV-2025-0002"
    _, total = await list_invoices(db_session, owner.id)
    assert total == 2
    assert approved_client.total_invoiced == Decimal("2420.00")


@pytest.mark.asyncio
async def test_unapproved_client_is_blocked_and_audited(
    db_session: AsyncSession, owner: User
) -> None:
    pending = Client(user_id=owner.id, name="Kees Smit", email="kees@smit-bouw.nl")
    db_session.add(pending)
    await db_session.flush()

    with pytest.raises(InvoicePermissionError) as excinfo:
        await create_invoice(db_session, owner.id, _draft(pending))

    assert excinfo.value.reason == "Client must be approved before invoices can be created"
    entry = (await db_session.execute(select(AuditLog))).scalars().all()[-1]
    assert entry.action == AuditAction.SECURITY_EVENT
    assert entry.entity_id == "BLOCKED_CREATION"


@pytest.mark.asyncio
async def test_other_users_client_is_blocked(
    db_session: AsyncSession, approved_client: Client
) -> None:
    stranger = User(email="petra@studio-visser.nl", password_hash="x")
    db_session.add(stranger)
    await db_session.flush()
    await assign_role(db_session, stranger.id, UserRoleType.USER)

    with pytest.raises(InvoicePermissionError, match="access denied"):
        await create_invoice(db_session, stranger.id, _draft(approved_client))


@pytest.mark.asyncio
async def test_invalid_lines_and_terms(
    db_session: AsyncSession, owner: User, approved_client: Client
) -> None:
    with pytest.raises(InvoiceValidationError) as excinfo:
        await create_invoice(db_session, owner.id, _draft(approved_client, items=[]))
    assert excinfo.value.errors == ["Er moet minimaal één regel aanwezig zijn"]

    with pytest.raises(InvoiceValidationError, match="Aangepaste vervaldatum"):
        await create_invoice(
            db_session,
            owner.id,
            _draft(approved_client, due_date_type=DueDateType.CUSTOM),
        )

    with pytest.raises(ValueError, match="Ongeldig BTW tarief"):
        await create_invoice(db_session, owner.id, _draft(approved_client, btw_rate=6))


@pytest.mark.asyncio
async def test_status_changes(
    db_session: AsyncSession, owner: User, approved_client: Client
) -> None:
    invoice = await create_invoice(db_session, owner.id, _draft(approved_client))

    with pytest.raises(InvoiceStateError):
        await change_status(db_session, invoice, InvoiceStatus.DRAFT)
    with pytest.raises(TransitionNotAllowed):
        await change_status(db_session, invoice, InvoiceStatus.PAID)

    await change_status(db_session, invoice, InvoiceStatus.SENT)
    assert invoice.sent_at is not None
    await change_status(db_session, invoice, InvoiceStatus.CANCELLED)

    assert invoice.status == InvoiceStatus.CANCELLED
    assert approved_client.total_invoiced == Decimal("0.00")


@pytest.mark.asyncio
async def test_mark_overdue(
    db_session: AsyncSession, owner: User, approved_client: Client
) -> None:
    late = await create_invoice(db_session, owner.id, _draft(approved_client))
    on_time = await create_invoice(
        db_session, owner.id, _draft(approved_client, issue_date=date(2025, 4, 20))
    )
    draft = await create_invoice(db_session, owner.id, _draft(approved_client))
    await change_status(db_session, late, InvoiceStatus.SENT)
    await change_status(db_session, on_time, InvoiceStatus.SENT)

    marked = await mark_overdue_invoices(db_session, owner.id, today=date(2025, 4, 1))

    assert marked == [late]
    assert late.status == InvoiceStatus.OVERDUE
    assert on_time.status == InvoiceStatus.SENT
    assert draft.status == InvoiceStatus.DRAFT

    summary = late_payment_summary(late, today=date(2025, 4, 14))
    assert summary["days_overdue"] == 30
    assert summary["statutory_interest"] == Decimal("11.93")
    assert late_payment_summary(draft, today=date(2025, 4, 14))["days_overdue"] == 0


@pytest.mark.asyncio
async def test_lookup_and_listing(
    db_session: AsyncSession, owner: User, approved_client: Client
) -> None:
    first = await create_invoice(db_session, owner.id, _draft(approved_client))
    second = await create_invoice(db_session, owner.id, _draft(approved_client))
    await change_status(db_session, second, InvoiceStatus.SENT)

    assert await get_invoice(db_session, first.id, owner.id) is first
    with pytest.raises(InvoiceNotFoundError):
        await get_invoice(db_session, first.id, owner.id + 1)

    invoices, total = await list_invoices(db_session, owner.id, status=InvoiceStatus.SENT)
    assert total == 1
    assert invoices == [second]


@pytest.mark.asyncio
async def test_dashboard_stats(
    db_session: AsyncSession, owner: User, approved_client: Client
) -> None:
    today = date.today()
    sent = await create_invoice(db_session, owner.id, _draft(approved_client, issue_date=today))
    paid = await create_invoice(db_session, owner.id, _draft(approved_client, issue_date=today))
    await create_invoice(db_session, owner.id, _draft(approved_client, issue_date=today))
    cancelled = await create_invoice(
        db_session, owner.id, _draft(approved_client, issue_date=today)
    )
    await change_status(db_session, sent, InvoiceStatus.SENT)
    await change_status(db_session, paid, InvoiceStatus.SENT)
    await change_status(db_session, paid, InvoiceStatus.PAID)
    await change_status(db_session, cancelled, InvoiceStatus.CANCELLED)

    stats = await get_dashboard_stats(db_session, owner.id, today=today)

    assert stats["total_invoices"] == 4
    assert stats["pending_invoices"] == 2
    assert stats["total_clients"] == 1
    assert stats["total_revenue"] == Decimal("2420.00")
    assert stats["outstanding_amount"] == Decimal("1210.00")
    assert stats["current_year_turnover"] == Decimal("2000.00")
    assert stats["btw_owed"] == Decimal("420.00")
    assert stats["kor_eligible"] is True


@pytest.mark.asyncio
async def test_kor_threshold(
    db_session: AsyncSession, owner: User, approved_client: Client
) -> None:
    today = date.today()
    big = _draft(
        approved_client,
        issue_date=today,
        items=[LineItemInput(description="Jaarproject", quantity=Decimal("1"), rate=Decimal("20000"))],
    )
    invoice = await create_invoice(db_session, owner.id, big)
    await change_status(db_session, invoice, InvoiceStatus.SENT)

    stats = await get_dashboard_stats(db_session, owner.id, today=today)

    assert stats["current_year_turnover"] == Decimal("20000.00")
    assert stats["kor_eligible"] is False
    assert stats["kor_threshold"] == Decimal("20000")
