"""
Outbound notifications via a Discord-compatible webhook.

Delivery is fire-and-forget: failures are logged and never raised, and the
notifier is a no-op when no webhook URL is configured.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import requests

from .utils import get_current_timestamp, get_logger, run_blocking, timestamp_to_iso

logger = get_logger(__name__)

COLOR_GREEN = 0x00FF00
COLOR_RED = 0xFF0000
COLOR_BLUE = 0x0099FF
COLOR_GREY = 0x808080

WEBHOOK_TIMEOUT_SEC = 10


class NotificationType(str, Enum):
    LOW_BALANCE = "LOW_BALANCE"
    BOT_START = "BOT_START"
    BOT_STOP = "BOT_STOP"
    CUSTOM = "CUSTOM"


@dataclass
class Notification:
    """A message to deliver."""

    type: NotificationType
    title: Optional[str] = None
    description: Optional[str] = None
    color: Optional[int] = None
    network: Optional[str] = None
    balances: Dict[str, float] = field(default_factory=dict)


class WebhookNotifier:
    """Formats notifications as embeds and posts them to a webhook."""

    def __init__(self, webhook_url: Optional[str] = None, session: Optional[requests.Session] = None):
        self.webhook_url = webhook_url
        self.enabled = bool(webhook_url)
        self.session = session or requests.Session()
        if not self.enabled:
            logger.info("Webhook notifications disabled (no URL configured)")

    def build_embed(self, notification: Notification) -> Dict:
        """Render a notification into a webhook embed."""
        timestamp = timestamp_to_iso(get_current_timestamp())

        if notification.type == NotificationType.LOW_BALANCE:
            fields: List[Dict] = [
                {"name": token, "value": f"Current: {amount:.6f}", "inline": True}
                for token, amount in notification.balances.items()
            ]
            return {
                "title": f"Low balance alert ({notification.network or 'unknown'})",
                "color": COLOR_BLUE,
                "fields": fields,
                "timestamp": timestamp,
            }

        if notification.type == NotificationType.BOT_START:
            title, color = "ARBITRAGE BOT STARTED", COLOR_GREEN
        elif notification.type == NotificationType.BOT_STOP:
            title, color = "ARBITRAGE BOT STOPPED", COLOR_RED
        else:
            title, color = "Notification", COLOR_GREY

        return {
            "title": notification.title or title,
            "description": notification.description or "",
            "color": notification.color if notification.color is not None else color,
            "timestamp": timestamp,
        }

    async def notify(self, notification: Notification) -> None:
        """Deliver a notification, swallowing delivery failures."""
        if not self.enabled:
            return

        payload = {"embeds": [self.build_embed(notification)]}
        try:
            response = await run_blocking(
                lambda: self.session.post(
                    self.webhook_url, json=payload, timeout=WEBHOOK_TIMEOUT_SEC
                )
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"Webhook delivery failed ({notification.type.value}): {e}")

    async def send_custom_message(
        self, title: str, description: str, color: int = COLOR_BLUE
    ) -> None:
        await self.notify(
            Notification(
                type=NotificationType.CUSTOM,
                title=title,
                description=description,
                color=color,
            )
        )

    async def send_startup_notification(self, wallet_address: Optional[str]) -> None:
        await self.notify(
            Notification(
                type=NotificationType.BOT_START,
                description=(
                    "Bot is now running and monitoring for opportunities.\n\n"
                    f"**Wallet Address:** `{wallet_address or 'read-only'}`\n**Status:** Online"
                ),
            )
        )

    async def send_shutdown_notification(self) -> None:
        await self.notify(
            Notification(type=NotificationType.BOT_STOP, description="Bot has been shut down.")
        )

    async def send_low_balance_alert(self, network: str, balances: Dict[str, float]) -> None:
        await self.notify(
            Notification(type=NotificationType.LOW_BALANCE, network=network, balances=balances)
        )
