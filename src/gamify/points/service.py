"""Points ledger: credits, debits and balance queries.

These functions only flush. The caller owns the unit of work and commits or
rolls back around them.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import PointsTransaction, User
from gamify.errors import InsufficientPointsError, UserNotFoundError, ValidationError

logger = logging.getLogger(__name__)


async def get_user(db: AsyncSession, user_id: str, *, for_update: bool = False) -> User:
    """Fetch a user or raise UserNotFoundError.

    ``for_update`` takes a row lock for the rest of the transaction.
    """
    stmt = select(User).where(User.id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFoundError(user_id)
    return user


async def credit_points(
    db: AsyncSession,
    user: User,
    points: int,
    source: str,
    metadata: dict | None = None,
    now: datetime | None = None,
    *,
    count_as_earned: bool = True,
) -> PointsTransaction:
    """Append a positive ledger entry and raise the user's balances.

    Awards raise both earned and available points. Refunds pass
    ``count_as_earned=False`` and only restore the spendable balance.
    """
    if points < 0:
        raise ValidationError(f"Points credited must not be negative, got {points}")
    if now is None:
        now = datetime.now(timezone.utc)

    entry = PointsTransaction(
        user_id=user.id,
        event_type=source,
        points=points,
        transaction_metadata=dict(metadata or {}),
        created_at=now,
    )
    db.add(entry)

    if count_as_earned:
        user.earned_points += points
    user.available_points += points

    await db.flush()
    logger.debug(
        "Credited %d points to %s (%s): earned=%d available=%d",
        points, user.id, source, user.earned_points, user.available_points,
    )
    return entry


async def debit_points(
    db: AsyncSession,
    user: User,
    points: int,
    source: str,
    metadata: dict | None = None,
    now: datetime | None = None,
) -> PointsTransaction:
    """Append a negative ledger entry and lower the available balance.

    Earned points are left untouched. A debit larger than the available
    balance is rejected before anything is written.
    """
    if points < 0:
        raise ValidationError(f"Points spent must not be negative, got {points}")
    if points > user.available_points:
        raise InsufficientPointsError(user.id, points, user.available_points)
    if now is None:
        now = datetime.now(timezone.utc)

    entry = PointsTransaction(
        user_id=user.id,
        event_type=source,
        points=-points,
        transaction_metadata=dict(metadata or {}),
        created_at=now,
    )
    db.add(entry)
    user.available_points -= points

    await db.flush()
    logger.debug(
        "Debited %d points from %s (%s): available=%d",
        points, user.id, source, user.available_points,
    )
    return entry


async def get_user_points(db: AsyncSession, user_id: str) -> int:
    """Return the user's lifetime earned points."""
    user = await get_user(db, user_id)
    return user.earned_points


async def get_transactions(
    db: AsyncSession,
    user_id: str,
    event_type: str | None = None,
) -> list[PointsTransaction]:
    """Return the user's ledger, oldest first, optionally for one event type."""
    stmt = select(PointsTransaction).where(PointsTransaction.user_id == user_id)
    if event_type is not None:
        stmt = stmt.where(PointsTransaction.event_type == event_type)
    result = await db.execute(stmt.order_by(PointsTransaction.created_at.asc()))
    return list(result.scalars().all())
