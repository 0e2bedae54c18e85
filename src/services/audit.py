"""Tamper-evident audit trail.

Entries are appended inside the caller's transaction. Each entry hashes its
own content together with the hash of the entry before it, so editing or
deleting a row breaks every hash that follows.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import orjson
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.models.audit import CHAIN_HEAD_ID, AuditAction, AuditChainHead, AuditLog
from src.models.base import utcnow

logger = get_logger(__name__)


@dataclass
class AuditContext:
    """Who did something, and from where."""

    user_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None


def _normalize(values: dict[str, Any] | None) -> dict[str, Any] | None:
    """Round-trip through JSON so stored values hash the same when reloaded."""
    if values is None:
        return None
    return orjson.loads(orjson.dumps(values, default=str))


def compute_entry_hash(entry: AuditLog) -> str:
    payload = {
        "user_id": entry.user_id,
        "action": entry.action.value,
        "entity": entry.entity,
        "entity_id": entry.entity_id,
        "old_values": entry.old_values,
        "new_values": entry.new_values,
        "ip_address": entry.ip_address,
        "context": entry.context,
        "created_at": entry.created_at.isoformat(),
        "previous_hash": entry.previous_hash,
    }
    canonical = orjson.dumps(payload, default=str, option=orjson.OPT_SORT_KEYS)
    return hashlib.sha256(canonical).hexdigest()


async def _claim_chain_head(db: AsyncSession) -> str | None:
    """Lock the chain head for this transaction and return the newest hash.

    The row is written before it is read, so a second writer blocks here
    until the first one commits and then sees its hash.
    """
    claimed = await db.execute(
        update(AuditChainHead)
        .where(AuditChainHead.id == CHAIN_HEAD_ID)
        .values(length=AuditChainHead.length + 1)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        raise RuntimeError("audit_chain_head row is missing; run the migrations")
    result = await db.execute(
        select(AuditChainHead.latest_hash).where(AuditChainHead.id == CHAIN_HEAD_ID)
    )
    return result.scalar_one()


async def log_action(
    db: AsyncSession,
    action: AuditAction,
    entity: str,
    entity_id: str | int,
    *,
    context: AuditContext | None = None,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    note: str | None = None,
) -> AuditLog:
    """Append one audit entry.

    Args:
        db: Session whose transaction the entry joins.
        action: What happened.
        entity: Entity name, e.g. ``"Client"``.
        entity_id: Identifier of the affected row (or a batch label).
        context: Acting user and request origin.
        old_values: State before the change.
        new_values: State after the change.
        note: Free-form context stored alongside the entry.
    """
    context = context or AuditContext()
    previous_hash = await _claim_chain_head(db)
    entry = AuditLog(
        user_id=context.user_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id),
        old_values=_normalize(old_values),
        new_values=_normalize(new_values),
        ip_address=context.ip_address,
        user_agent=context.user_agent[:500] if context.user_agent else None,
        context=note,
        created_at=utcnow(),
        previous_hash=previous_hash,
    )
    entry.entry_hash = compute_entry_hash(entry)
    db.add(entry)
    await db.flush()
    await db.execute(
        update(AuditChainHead)
        .where(AuditChainHead.id == CHAIN_HEAD_ID)
        .values(latest_hash=entry.entry_hash)
        .execution_options(synchronize_session=False)
    )

    logger.info(
        "audit_logged",
        action=action.value,
        entity=entity,
        entity_id=entry.entity_id,
        user_id=context.user_id,
    )
    return entry


async def get_audit_logs(
    db: AsyncSession,
    *,
    user_id: int | None = None,
    entity: str | None = None,
    entity_id: str | None = None,
    action: AuditAction | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    """Return a page of matching entries (newest first) and the total count."""
    filters = []
    if user_id is not None:
        filters.append(AuditLog.user_id == user_id)
    if entity:
        filters.append(AuditLog.entity == entity)
    if entity_id:
        filters.append(AuditLog.entity_id == entity_id)
    if action is not None:
        filters.append(AuditLog.action == action)
    if date_from is not None:
        filters.append(AuditLog.created_at >= date_from)
    if date_to is not None:
        filters.append(AuditLog.created_at <= date_to)

    total = int(
        (await db.execute(select(func.count(AuditLog.id)).where(*filters))).scalar()
        or 0
    )
    result = await db.execute(
        select(AuditLog)
        .where(*filters)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


@dataclass
class ChainVerification:
    valid: bool
    checked: int
    broken_at: int | None = None
    reason: str | None = None


async def verify_chain(db: AsyncSession) -> ChainVerification:
    """Walk the trail in insertion order and report the first broken entry."""
    result = await db.execute(select(AuditLog).order_by(AuditLog.id))
    previous: str | None = None
    checked = 0
    for entry in result.scalars():
        checked += 1
        if entry.previous_hash != previous:
            logger.warning("audit_chain_broken", entry_id=entry.id, reason="link")
            return ChainVerification(False, checked, entry.id, "previous_hash mismatch")
        if compute_entry_hash(entry) != entry.entry_hash:
            logger.warning("audit_chain_broken", entry_id=entry.id, reason="content")
            return ChainVerification(False, checked, entry.id, "entry_hash mismatch")
        previous = entry.entry_hash
    head = (
        await db.execute(
            select(AuditChainHead.latest_hash).where(AuditChainHead.id == CHAIN_HEAD_ID)
        )
    ).scalar_one_or_none()
    if head != previous:
        logger.warning("audit_chain_broken", reason="head")
        return ChainVerification(False, checked, None, "chain head mismatch")
    return ChainVerification(True, checked)
