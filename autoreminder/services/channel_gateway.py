"""Channel gateway.

Single entry point for every outgoing notification. Dispatches on the
delivery's channel, retries transient failures with exponential backoff
and reports the outcome as a DeliveryResult instead of raising.
"""

from dataclasses import asdict, dataclass
from typing import Protocol, assert_never

from autoreminder.config import Settings, settings
from autoreminder.core.clock import Clock, SystemClock
from autoreminder.core.errors import (
    BoardAuthError,
    DeliveryError,
    ExternalApiUnavailable,
    PermanentDeliveryError,
    TransientDeliveryError,
)
from autoreminder.core.escalation import Channel
from autoreminder.logging_config import get_logger
from autoreminder.services.delivery_providers import EmailProvider, SmsProvider
from autoreminder.services.telegram_bot import TelegramBot
from autoreminder.services.trello_client import TrelloApiError

logger = get_logger(__name__)


class CommentTarget(Protocol):
    async def post_comment(self, card_id: str, text: str) -> str: ...


@dataclass(frozen=True)
class Delivery:
    """One message to one address on one channel.

    For board comments ``address`` is the card id and ``recipient`` names
    everyone mentioned in the comment.
    """

    channel: Channel
    address: str
    recipient: str
    body: str
    subject: str = ""
    card_id: str = ""


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    channel: Channel
    recipient: str
    provider_message_id: str | None = None
    error_class: str | None = None
    error: str | None = None
    transient: bool = False

    @classmethod
    def sent(cls, delivery: Delivery, message_id: str) -> "DeliveryResult":
        return cls(
            success=True,
            channel=delivery.channel,
            recipient=delivery.recipient,
            provider_message_id=message_id or None,
        )

    @classmethod
    def failed(cls, delivery: Delivery, error: DeliveryError) -> "DeliveryResult":
        return cls(
            success=False,
            channel=delivery.channel,
            recipient=delivery.recipient,
            error_class=error.error_class,
            error=str(error),
            transient=isinstance(error, TransientDeliveryError),
        )

    @classmethod
    def unexpected(cls, delivery: Delivery, error: Exception) -> "DeliveryResult":
        return cls(
            success=False,
            channel=delivery.channel,
            recipient=delivery.recipient,
            error_class="provider_error",
            error=str(error) or type(error).__name__,
        )

    def to_record(self) -> dict:
        record = asdict(self)
        record["channel"] = self.channel.value
        return record


class ChannelGateway:
    """Sends deliveries through the provider for their channel.

    Args:
        board: Board client used for comments.
        email: Email provider.
        sms: SMS provider.
        chat: Chat provider.
        clock: Used for backoff sleeps.
        config: Retry settings.
    """

    def __init__(
        self,
        board: CommentTarget,
        email: EmailProvider,
        sms: SmsProvider,
        chat: TelegramBot,
        *,
        clock: Clock | None = None,
        config: Settings | None = None,
    ):
        self._board = board
        self._email = email
        self._sms = sms
        self._chat = chat
        self._clock = clock or SystemClock()
        config = config or settings
        self._max_attempts = max(1, config.delivery_max_attempts)
        self._backoff_seconds = config.delivery_backoff_seconds

    async def aclose(self) -> None:
        await self._email.aclose()
        await self._sms.aclose()
        await self._chat.aclose()

    async def _post_comment(self, delivery: Delivery) -> str:
        try:
            return await self._board.post_comment(delivery.address, delivery.body)
        except BoardAuthError as e:
            raise PermanentDeliveryError(str(e), error_class="unauthorized") from e
        except ExternalApiUnavailable as e:
            raise TransientDeliveryError(str(e), error_class="board_unavailable") from e
        except TrelloApiError as e:
            raise PermanentDeliveryError(
                str(e), error_class=f"http_{e.status_code}"
            ) from e

    async def _dispatch(self, delivery: Delivery) -> str:
        match delivery.channel:
            case Channel.comment:
                return await self._post_comment(delivery)
            case Channel.email:
                return await self._email.send(
                    delivery.address, delivery.subject, delivery.body
                )
            case Channel.sms:
                return await self._sms.send(delivery.address, delivery.body)
            case Channel.chat:
                return await self._chat.send_message(delivery.address, delivery.body)
            case _:
                assert_never(delivery.channel)

    async def send(self, delivery: Delivery) -> DeliveryResult:
        """Deliver one message, retrying transient failures.

        Never raises. A provider that fails in an unexpected way is
        reported as a permanent ``provider_error``.
        """
        result: DeliveryResult | None = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                message_id = await self._dispatch(delivery)
            except TransientDeliveryError as e:
                result = DeliveryResult.failed(delivery, e)
                if attempt < self._max_attempts:
                    delay = self._backoff_seconds * 2 ** (attempt - 1)
                    logger.warning(
                        "Transient delivery failure, retrying",
                        channel=delivery.channel.value,
                        card_id=delivery.card_id,
                        attempt=attempt,
                        retry_in_seconds=delay,
                        error=str(e),
                    )
                    await self._clock.sleep(delay)
                continue
            except PermanentDeliveryError as e:
                logger.warning(
                    "Delivery failed permanently",
                    channel=delivery.channel.value,
                    card_id=delivery.card_id,
                    recipient=delivery.recipient,
                    error_class=e.error_class,
                    error=str(e),
                )
                return DeliveryResult.failed(delivery, e)
            except Exception as e:
                logger.error(
                    "Provider raised an unexpected error",
                    exc_info=True,
                    channel=delivery.channel.value,
                    card_id=delivery.card_id,
                    recipient=delivery.recipient,
                )
                return DeliveryResult.unexpected(delivery, e)

            logger.info(
                "Delivery sent",
                channel=delivery.channel.value,
                card_id=delivery.card_id,
                recipient=delivery.recipient,
                attempts=attempt,
            )
            return DeliveryResult.sent(delivery, message_id)

        logger.error(
            "Delivery failed after retries",
            channel=delivery.channel.value,
            card_id=delivery.card_id,
            recipient=delivery.recipient,
            attempts=self._max_attempts,
            error_class=result.error_class,
            error=result.error,
        )
        return result
