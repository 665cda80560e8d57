"""
Notification Service.

Publishes user-facing notifications to Redis pub/sub. Delivery to devices
happens downstream; publishing is fire-and-forget and never fails the
operation that triggered it.
"""

import enum
import json
import logging
from typing import Optional, Dict, Any

from warehouse_backend.app.core.clock import utcnow
from warehouse_backend.app.core.config import settings
from warehouse_backend.app.core.redis_client import get_redis

logger = logging.getLogger("warehouse.notifications")


class NotificationType(str, enum.Enum):
    PARCEL_ARRIVED = "PARCEL_ARRIVED"
    PARCEL_STORED = "PARCEL_STORED"
    DELIVERY_REQUESTED = "DELIVERY_REQUESTED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    EXCEPTION_CREATED = "EXCEPTION_CREATED"
    EXCEPTION_RESOLVED = "EXCEPTION_RESOLVED"
    OWNERSHIP_ASSIGNED = "OWNERSHIP_ASSIGNED"


TEMPLATES: Dict[NotificationType, Dict[str, str]] = {
    NotificationType.PARCEL_ARRIVED: {
        "title": "Parcel Arrived",
        "message": "Your parcel {tracking_code} has arrived at the warehouse.",
    },
    NotificationType.PARCEL_STORED: {
        "title": "Parcel Ready",
        "message": "Your parcel {tracking_code} is stored and ready for a delivery request.",
    },
    NotificationType.DELIVERY_REQUESTED: {
        "title": "Delivery Requested",
        "message": "Delivery requested for parcel {tracking_code}. Total fee: {total_fee:.2f}. Please confirm payment.",
    },
    NotificationType.PAYMENT_CONFIRMED: {
        "title": "Payment Confirmed",
        "message": "Payment confirmed for parcel {tracking_code}. Your parcel will be dispatched soon.",
    },
    NotificationType.OUT_FOR_DELIVERY: {
        "title": "Out for Delivery",
        "message": "Your parcel {tracking_code} is on its way!",
    },
    NotificationType.DELIVERED: {
        "title": "Parcel Delivered",
        "message": "Your parcel {tracking_code} has been delivered. Thank you!",
    },
    NotificationType.EXCEPTION_CREATED: {
        "title": "Parcel Issue",
        "message": "There is an issue with your parcel {tracking_code}: {exception_type}. Our team is working on it.",
    },
    NotificationType.EXCEPTION_RESOLVED: {
        "title": "Issue Resolved",
        "message": "The issue with your parcel {tracking_code} has been resolved.",
    },
    NotificationType.OWNERSHIP_ASSIGNED: {
        "title": "Parcel Assigned",
        "message": "Parcel {tracking_code} has been assigned to your account.",
    },
}


class NotificationService:

    @staticmethod
    def channel_for(user_id: int) -> str:
        return f"{settings.notification_channel_prefix}:{user_id}"

    @staticmethod
    def render(type: NotificationType, **values) -> Dict[str, str]:
        template = TEMPLATES[type]
        return {
            "title": template["title"],
            "message": template["message"].format(**values),
        }

    @staticmethod
    async def publish(
        user_id: Optional[int],
        type: NotificationType,
        parcel_id: Optional[int] = None,
        delivery_id: Optional[int] = None,
        **values: Any
    ) -> bool:
        """
        Publish one notification to the user's channel.

        Returns:
            True if published, False if skipped or failed
        """
        if user_id is None or not settings.notifications_enabled:
            return False

        try:
            payload = {
                "user_id": user_id,
                "type": type.value,
                "parcel_id": parcel_id,
                "delivery_id": delivery_id,
                "created_at": utcnow().isoformat(),
                **NotificationService.render(type, **values),
            }
            redis = await get_redis()
            await redis.publish(NotificationService.channel_for(user_id), json.dumps(payload))
            return True
        except Exception:
            logger.warning(
                "Notification publish failed",
                exc_info=True,
                extra={"user_id": user_id, "type": type.value}
            )
            return False
