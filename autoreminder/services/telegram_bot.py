"""Telegram bot chat channel.

Sends reminder messages through the Telegram Bot API ``sendMessage``
method. Recipients are addressed by chat id, taken from the recipient
directory.
"""

import httpx

from autoreminder.config import Settings, settings
from autoreminder.core.errors import PermanentDeliveryError
from autoreminder.logging_config import get_logger
from autoreminder.services.delivery_providers import post_for_delivery

logger = get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org/bot"


class TelegramBot:
    """Chat provider backed by a Telegram bot."""

    name = "telegram"

    def __init__(
        self,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._settings = config or settings
        self._client = client or httpx.AsyncClient(
            timeout=self._settings.delivery_timeout_seconds,
        )
        self._owns_client = client is None

    @property
    def is_configured(self) -> bool:
        return bool(self._settings.telegram_bot_token)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _get_api_url(self, method: str) -> str:
        """Build Telegram Bot API URL for a given method."""
        return f"{TELEGRAM_API_BASE}{self._settings.telegram_bot_token}/{method}"

    async def send_message(self, chat_id: str, text: str) -> str:
        """Send a message to a Telegram chat.

        Args:
            chat_id: Telegram chat ID to send to.
            text: Plain message text.

        Returns:
            The Telegram message id.

        Raises:
            PermanentDeliveryError: Bot not configured, chat rejected.
            TransientDeliveryError: Timeouts, 429 and 5xx.
        """
        if not self.is_configured:
            raise PermanentDeliveryError(
                "Telegram bot token is not configured", error_class="not_configured"
            )
        if not chat_id:
            raise PermanentDeliveryError(
                "Missing Telegram chat id", error_class="invalid_recipient"
            )

        response = await post_for_delivery(
            self._client,
            self._get_api_url("sendMessage"),
            provider=self.name,
            json={"chat_id": chat_id, "text": text},
        )

        data = response.json()
        if not data.get("ok"):
            raise PermanentDeliveryError(
                f"Send message failed: {data.get('description', 'Unknown')}",
                error_class="rejected",
            )

        return str(data.get("result", {}).get("message_id", ""))
