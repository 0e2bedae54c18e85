"""Tests for the hash-chained audit trail."""

import asyncio
from collections.abc import AsyncGenerator
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.models import Base
from src.models.audit import AuditAction, AuditChainHead, AuditLog
from src.services.audit import (
    AuditContext,
    compute_entry_hash,
    get_audit_logs,
    log_action,
    verify_chain,
)


async def _seed(db: AsyncSession) -> list[AuditLog]:
    context = AuditContext(user_id=None, ip_address="127.0.0.1", user_agent="pytest")
    return [
        await log_action(
            db,
            AuditAction.CREATE,
            "Client",
            1,
            context=context,
            new_values={"company": "De Vries Advies B.V.", "total": Decimal("12.50")},
        ),
        await log_action(
            db,
            AuditAction.STATUS_CHANGE,
            "Client",
            1,
            context=context,
            old_values={"status": "EMAIL_SENT"},
            new_values={"status": "CLIENT_CONFIRMED"},
        ),
        await log_action(db, AuditAction.CREATE, "Invoice", "INV-2025-0001", note="preview"),
    ]


@pytest.mark.asyncio
async def test_entries_link_to_their_predecessor(db_session: AsyncSession) -> None:
    first, second, third = await _seed(db_session)

    assert first.previous_hash is None
    assert second.previous_hash == first.entry_hash
    assert third.previous_hash == second.entry_hash
    assert first.entry_hash == compute_entry_hash(first)
    assert len(first.entry_hash) == 64


@pytest.mark.asyncio
async def test_values_are_stored_as_json(db_session: AsyncSession) -> None:
    first, _, third = await _seed(db_session)

    assert first.new_values == {"company": "De Vries Advies B.V.", "total": "12.50"}
    assert third.entity_id == "INV-2025-0001"
    assert third.context == "preview"


@pytest.mark.asyncio
async def test_intact_chain_verifies(db_session: AsyncSession) -> None:
    await _seed(db_session)
    await db_session.commit()

    result = await verify_chain(db_session)

    assert result.valid
    assert result.checked == 3
    assert result.broken_at is None


@pytest.mark.asyncio
async def test_edited_entry_breaks_the_chain(db_session: AsyncSession) -> None:
    _, second, _ = await _seed(db_session)
    await db_session.commit()

    await db_session.execute(
        update(AuditLog)
        .where(AuditLog.id == second.id)
        .values(new_values={"status": "APPROVED"})
    )
    await db_session.commit()
    db_session.expire_all()

    result = await verify_chain(db_session)

    assert not result.valid
    assert result.broken_at == second.id
    assert result.reason == "entry_hash mismatch"
    assert result.checked == 2


@pytest.mark.asyncio
async def test_deleted_entry_breaks_the_link(db_session: AsyncSession) -> None:
    first, second, third = await _seed(db_session)
    await db_session.delete(second)
    await db_session.commit()

    result = await verify_chain(db_session)

    assert not result.valid
    assert result.broken_at == third.id
    assert result.reason == "previous_hash mismatch"


@pytest.mark.asyncio
async def test_filtering_and_paging(db_session: AsyncSession) -> None:
    await _seed(db_session)

    entries, total = await get_audit_logs(db_session, entity="Client")
    assert total == 2
    assert [entry.action for entry in entries] == [
        AuditAction.STATUS_CHANGE,
        AuditAction.CREATE,
    ]

    entries, total = await get_audit_logs(db_session, action=AuditAction.CREATE, limit=1)
    assert total == 2
    assert len(entries) == 1

    entries, total = await get_audit_logs(db_session, entity_id="INV-2025-0001")
    assert total == 1


@pytest.mark.asyncio
async def test_removing_the_newest_entry_is_detected(db_session: AsyncSession) -> None:
    _, _, third = await _seed(db_session)
    await db_session.delete(third)
    await db_session.commit()

    result = await verify_chain(db_session)

    assert not result.valid
    assert result.checked == 2
    assert result.reason == "chain head mismatch"


@pytest_asyncio.fixture
async def file_session_factory(
    tmp_path: Path,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Sessions on separate sqlite connections, so their transactions overlap."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_writers_extend_one_chain(
    file_session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with file_session_factory() as first, file_session_factory() as second:
        await log_action(first, AuditAction.CREATE, "Client", 1)
        await first.commit()

        pending = await log_action(first, AuditAction.UPDATE, "Client", 1)
        racing = asyncio.create_task(log_action(second, AuditAction.CREATE, "Invoice", 7))
        await asyncio.sleep(0.2)
        assert not racing.done()

        await first.commit()
        latest = await racing
        await second.commit()

    assert latest.previous_hash == pending.entry_hash

    async with file_session_factory() as reader:
        result = await verify_chain(reader)
        head = await reader.get(AuditChainHead, 1)

    assert result.valid
    assert result.checked == 3
    assert head.latest_hash == latest.entry_hash
    assert head.length == 3
