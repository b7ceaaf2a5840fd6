"""Redemption observers: refunds on cancellation and outbound notifications."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import RedemptionStatus, RewardRedemption
from gamify.notifications.sink import defer_notification
from gamify.points.service import credit_points, get_user

logger = logging.getLogger(__name__)

REFUND_EVENT_TYPE = "REDEMPTION_REFUND"
REFUND_REASON = "REDEMPTION_CANCELLED"


class PointsRefundObserver:
    """Credits the reward's cost back to the user when a redemption is cancelled.

    The refund restores available points only. Earned points were never
    reduced by the spend, so they stay as they are.
    """

    async def on_created(self, db: AsyncSession, redemption: RewardRedemption) -> None:
        return None

    async def on_status_changed(
        self,
        db: AsyncSession,
        redemption: RewardRedemption,
        old_status: str,
        new_status: str,
    ) -> None:
        if new_status != RedemptionStatus.CANCELLED.value:
            return

        user = await get_user(db, redemption.user_id, for_update=True)
        reward = redemption.reward
        await credit_points(
            db,
            user,
            reward.cost_in_points,
            REFUND_EVENT_TYPE,
            {
                "redemptionId": redemption.id,
                "rewardId": reward.id,
                "rewardName": reward.name,
                "reason": REFUND_REASON,
            },
            datetime.now(timezone.utc),
            count_as_earned=False,
        )
        logger.info(
            "Refunded %d points to %s for cancelled redemption %s",
            reward.cost_in_points, user.id, redemption.id,
        )


class NotificationRedemptionObserver:
    """Queues a message on the ``redemptions`` channel for creation and every status change.

    Messages are held on the session and go out only once the transaction commits.
    """

    channel = "redemptions"

    async def on_created(self, db: AsyncSession, redemption: RewardRedemption) -> None:
        defer_notification(db, self.channel, {
            "userId": redemption.user_id,
            "eventType": "REDEMPTION_CREATED",
            "redemptionId": redemption.id,
            "rewardId": redemption.reward.id,
            "rewardName": redemption.reward.name,
            "pointsSpent": redemption.reward.cost_in_points,
            "updatedBalance": redemption.user.available_points,
            "status": redemption.status,
        })

    async def on_status_changed(
        self,
        db: AsyncSession,
        redemption: RewardRedemption,
        old_status: str,
        new_status: str,
    ) -> None:
        defer_notification(db, self.channel, {
            "userId": redemption.user_id,
            "eventType": "REDEMPTION_STATUS_CHANGED",
            "redemptionId": redemption.id,
            "rewardId": redemption.reward.id,
            "rewardName": redemption.reward.name,
            "oldStatus": old_status,
            "newStatus": new_status,
        })
