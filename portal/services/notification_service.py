"""Discord webhook notifications for allocation workflow events.

Notifications are a side channel: a failed or unconfigured webhook is logged
and never surfaces to the caller whose state change triggered it.
"""

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Set

import httpx

from portal.core.config import settings
from portal.utils.logging import get_logger

LOGGER = get_logger(__name__)

FOOTER_TEXT = "SDK Admin Portal"


class NotificationType(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


EMBED_COLORS = {
    NotificationType.INFO: 0x0099FF,
    NotificationType.WARNING: 0xFF9900,
    NotificationType.ERROR: 0xFF0000,
    NotificationType.SUCCESS: 0x00FF00,
}


def build_system_notification(
    title: str,
    description: str,
    type: NotificationType = NotificationType.INFO,
    username: str = FOOTER_TEXT,
    mention_user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a webhook payload holding a single embed."""
    payload: Dict[str, Any] = {
        "username": username,
        "embeds": [
            {
                "title": title,
                "description": description,
                "color": EMBED_COLORS[NotificationType(type)],
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "footer": {"text": FOOTER_TEXT},
            }
        ],
    }
    if mention_user_id:
        payload["content"] = f"<@{mention_user_id}>"
        payload["allowed_mentions"] = {"users": [mention_user_id]}
    return payload


class NotificationService:
    """Posts workflow events to a Discord webhook."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        mention_user_id: Optional[str] = None,
        username: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        config = settings.notifications
        self.webhook_url = webhook_url if webhook_url is not None else config.webhook_url
        self.mention_user_id = mention_user_id if mention_user_id is not None else config.mention_user_id
        self.username = username or config.username
        self.timeout = timeout or config.timeout
        self._tasks: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def send(
        self,
        title: str,
        description: str,
        type: NotificationType = NotificationType.INFO,
    ) -> None:
        """Post a notification.

        Raises:
            httpx.HTTPError: If the webhook call fails
        """
        if not self.enabled:
            LOGGER.debug(f"Discord webhook not configured; skipping notification: {title}")
            return

        payload = build_system_notification(
            title,
            description,
            type=type,
            username=self.username,
            mention_user_id=self.mention_user_id,
        )
        async with httpx.AsyncClient() as client:
            response = await client.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()

        LOGGER.info(f"Sent notification: {title}", extra={"notification_type": NotificationType(type).value})

    async def send_safely(
        self,
        title: str,
        description: str,
        type: NotificationType = NotificationType.INFO,
    ) -> bool:
        """Like send, but logs failures instead of raising them."""
        try:
            await self.send(title, description, type=type)
            return True
        except Exception as e:
            LOGGER.error(
                f"Failed to send notification '{title}': {e}",
                exc_info=True,
                extra={"notification_type": NotificationType(type).value},
            )
            return False

    def dispatch(
        self,
        title: str,
        description: str,
        type: NotificationType = NotificationType.INFO,
    ) -> Optional[asyncio.Task]:
        """Schedule a notification without waiting for it.

        Must be called from a running event loop. Returns the task, or None
        when no webhook is configured.
        """
        if not self.enabled:
            return None

        task = asyncio.create_task(self.send_safely(title, description, type=type))
        # Keep a reference until done so the task is not garbage collected mid-flight
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


notification_service = NotificationService()
