"""Telegram alerts for operator-visible pipeline failures."""

import httpx
import structlog

from ..core.interfaces import AlertSink

logger = structlog.get_logger(__name__)


class NoopAlertSink(AlertSink):
    """No-operation alert sink for when Telegram is not configured."""

    async def push(self, message: str) -> None:
        """No-op push - just log the message."""
        logger.info("Alert (noop)", message=message)


class TelegramAlertSink(AlertSink):
    """Telegram-based alert sink implementation."""

    def __init__(
        self,
        bot_token: str,
        admin_user_ids: list[int],
        session: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize Telegram alert sink.

        Args:
            bot_token: Telegram bot token
            admin_user_ids: List of admin user IDs to send alerts to
            session: Optional HTTP session for requests
        """
        self.bot_token = bot_token
        self.admin_user_ids = admin_user_ids
        self.session = session or httpx.AsyncClient()
        self.base_url = f"https://api.telegram.org/bot{bot_token}"

        logger.info("Telegram alert sink initialized", admin_count=len(admin_user_ids))

    async def push(self, message: str) -> None:
        """Push alert message to all admin users.

        A failure for one admin is logged and does not stop the others.

        Args:
            message: Alert message to send
        """
        if not self.admin_user_ids:
            logger.warning("No admin users configured, skipping alert")
            return

        success_count = 0
        for user_id in self.admin_user_ids:
            try:
                await self._send_message(user_id, message)
                success_count += 1
                logger.debug("Alert sent to admin", user_id=user_id)
            except Exception as e:
                logger.error(
                    "Failed to send alert to admin", user_id=user_id, error=str(e)
                )

        logger.info(
            "Alert push completed",
            total_admins=len(self.admin_user_ids),
            success_count=success_count,
        )

    async def _send_message(self, chat_id: int, text: str) -> None:
        url = f"{self.base_url}/sendMessage"
        data = {"chat_id": chat_id, "text": text, "parse_mode": "HTML"}

        response = await self.session.post(url, json=data)
        response.raise_for_status()

        result = response.json()
        if not result.get("ok"):
            raise RuntimeError(
                f"Telegram API error: {result.get('description', 'Unknown error')}"
            )

    async def close(self) -> None:
        """Close the alert sink and cleanup resources."""
        if self.session:
            await self.session.aclose()
        logger.info("Telegram alert sink closed")

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
