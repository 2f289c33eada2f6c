"""
User notifications about finished generations.

Notifications are kept in process memory per user.  Delivery is a side
effect of a generation outcome and must never change that outcome, so
``notify_generation_completed`` and ``notify_generation_failed`` log and
swallow any error raised while creating the notification.
"""

import asyncio
import dataclasses
import datetime
import typing
import uuid

import structlog

import visioncast.models

logger = structlog.get_logger()

NotificationType = typing.Literal[
    "generation_complete",
    "post_scheduled",
    "post_published",
    "system",
    "marketing",
    "usage_limit",
    "account_update",
]
NotificationPriority = typing.Literal["low", "medium", "high", "urgent"]


@dataclasses.dataclass
class Notification:
    identifier: str
    user_identifier: str
    notification_type: str
    title: str
    message: str
    data: dict[str, typing.Any]
    priority: str
    is_read: bool = False
    created_at: datetime.datetime = dataclasses.field(
        default_factory=lambda: datetime.datetime.now(datetime.UTC),
    )


class NotificationService:
    """In-memory notification inbox, one list per user."""

    def __init__(self) -> None:
        self._notifications_by_user: dict[str, list[Notification]] = {}
        self._lock = asyncio.Lock()

    async def create_notification(
        self,
        user_identifier: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict[str, typing.Any] | None = None,
        priority: NotificationPriority = "medium",
    ) -> Notification:
        notification = Notification(
            identifier=uuid.uuid4().hex,
            user_identifier=user_identifier,
            notification_type=notification_type,
            title=title,
            message=message,
            data=dict(data or {}),
            priority=priority,
        )
        async with self._lock:
            self._notifications_by_user.setdefault(user_identifier, []).append(notification)

        logger.info(
            "notification_created",
            notification_id=notification.identifier,
            user_id=user_identifier,
            notification_type=notification_type,
            priority=priority,
        )
        return notification

    async def list_notifications(self, user_identifier: str) -> list[Notification]:
        """Return a user's notifications, newest first."""
        return list(reversed(self._notifications_by_user.get(user_identifier, [])))

    async def notify_generation_completed(self, creation: visioncast.models.CreationRecord) -> None:
        try:
            await self.create_notification(
                creation.owner_identifier,
                "generation_complete",
                "Image Generation Complete",
                f'Your image "{creation.title}" has been generated successfully!',
                data={
                    "creationId": creation.identifier,
                    "type": creation.kind,
                    "title": creation.title,
                    "imageUrl": creation.file_url,
                },
                priority="medium",
            )
        except Exception as notification_error:
            logger.error(
                "notification_delivery_failed",
                creation_id=creation.identifier,
                error=str(notification_error),
            )

    async def notify_generation_failed(self, creation: visioncast.models.CreationRecord) -> None:
        try:
            await self.create_notification(
                creation.owner_identifier,
                "system",
                "Image Generation Failed",
                f"Failed to generate your image. Please try again. Error: {creation.error}",
                data={
                    "creationId": creation.identifier,
                    "type": creation.kind,
                    "error": creation.error,
                },
                priority="high",
            )
        except Exception as notification_error:
            logger.error(
                "notification_delivery_failed",
                creation_id=creation.identifier,
                error=str(notification_error),
            )
