"""Card monitoring poll cycle.

One cycle: load the configuration snapshot, list the monitored cards on the
board, sync them into the card store, then run every card through
detect -> decide -> claim -> send -> record on a bounded worker pool.

Per-card failures are counted and logged; the batch always continues. A
board outage or an invalid configuration ends the cycle early without
touching card state.
"""

import asyncio
import enum
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from autoreminder.config import Settings, settings
from autoreminder.core.clock import Clock, SystemClock
from autoreminder.core.errors import (
    ConfigurationInvalid,
    ExternalApiUnavailable,
    PersistenceConflict,
)
from autoreminder.core.escalation import (
    Action,
    ActionKind,
    CardSnapshot,
    Channel,
    ConfigSnapshot,
    Recipient,
    calendar_days_between,
    decide,
)
from autoreminder.database import get_session_maker
from autoreminder.logging_config import correlation_scope, get_logger
from autoreminder.schemas.monitoring import CycleReport
from autoreminder.schemas.monitoring_config import MonitoringConfigUpdate
from autoreminder.services.card_store import (
    CardObservation,
    CardStateStore,
    Claim,
    SqlCardStateStore,
)
from autoreminder.services.channel_gateway import (
    ChannelGateway,
    Delivery,
    DeliveryResult,
)
from autoreminder.services.config_store import ConfigStore, SqlConfigStore
from autoreminder.services.delivery_providers import EmailProvider, SmsProvider
from autoreminder.services.response_detector import has_new_response
from autoreminder.services.telegram_bot import TelegramBot
from autoreminder.services.templates import render_template, template_for
from autoreminder.services.trello_client import BoardCard, TrelloClient

logger = get_logger(__name__)


class CardOutcome(enum.StrEnum):
    """What happened to one card in a cycle."""

    idle = enum.auto()
    resolved = enum.auto()
    sent = enum.auto()
    failed = enum.auto()
    released = enum.auto()


def observe(card: BoardCard, directory: dict[str, dict[str, str]]) -> CardObservation:
    """Turn a board card into an observation, filling in contact details.

    Addresses the board does not expose come from the recipient directory,
    keyed by board username.
    """
    recipients = []
    for member in card.members:
        contact = directory.get(member.username, {})
        recipients.append(
            Recipient(
                identity=member.member_id,
                username=member.username,
                full_name=member.full_name,
                email=contact.get("email") or member.email,
                phone=contact.get("phone"),
                chat_id=contact.get("chat_id"),
            )
        )
    return CardObservation(
        card_id=card.card_id,
        name=card.name,
        url=card.url,
        board_id=card.board_id,
        list_id=card.list_id,
        list_name=card.list_name,
        due_at=card.due_at,
        recipients=tuple(recipients),
    )


def build_deliveries(
    card: CardSnapshot,
    action: Action,
    config: ConfigSnapshot,
    now: datetime,
) -> tuple[list[Delivery], list[str]]:
    """Render the messages an action sends.

    Recipients without an address on a channel are skipped.

    Returns:
        (deliveries, targeted recipient identities or addresses)
    """
    local_now = now.astimezone(config.tz)
    mentions = " ".join(f"@{r.username or r.identity}" for r in card.recipients)
    variables = {
        "card_name": card.name,
        "card_url": card.url,
        "mentions": mentions,
        "level": action.level,
        "days_open": calendar_days_between(
            card.escalation_state.cycle_opened_at, now, config.tz
        ),
        "current_date": local_now.date().isoformat(),
    }

    if action.kind == ActionKind.final:
        rendered = render_template(
            template_for(action.kind, Channel.email),
            {
                **variables,
                "recipient": "Supervisor",
                "mentions": ", ".join(r.display_name for r in card.recipients),
            },
        )
        supervisors = [
            Delivery(
                channel=Channel.email,
                address=email,
                recipient=email,
                subject=rendered.subject,
                body=rendered.body,
                card_id=card.card_id,
            )
            for email in config.supervisor_emails
        ]
        return supervisors, list(config.supervisor_emails)

    deliveries: list[Delivery] = []
    for channel in action.channels:
        if channel == Channel.comment:
            rendered = render_template(
                template_for(action.kind, channel),
                {**variables, "recipient": mentions},
            )
            deliveries.append(
                Delivery(
                    channel=channel,
                    address=card.card_id,
                    recipient=",".join(r.identity for r in card.recipients),
                    body=rendered.body,
                    card_id=card.card_id,
                )
            )
            continue

        for recipient in card.recipients:
            address = recipient.address_for(channel)
            if not address:
                logger.info(
                    "Recipient has no address for channel",
                    card_id=card.card_id,
                    recipient=recipient.identity,
                    channel=channel.value,
                )
                continue
            rendered = render_template(
                template_for(action.kind, channel),
                {**variables, "recipient": recipient.display_name},
            )
            deliveries.append(
                Delivery(
                    channel=channel,
                    address=address,
                    recipient=recipient.identity,
                    subject=rendered.subject,
                    body=rendered.body,
                    card_id=card.card_id,
                )
            )

    return deliveries, [r.identity for r in card.recipients]


def undeliverable(action: Action) -> DeliveryResult:
    """Result recorded when an action had nobody to send to."""
    return DeliveryResult(
        success=False,
        channel=action.channels[0],
        recipient="-",
        error_class="no_address",
        error="No recipient has an address for this level",
    )


class MonitoringService:
    """Runs poll cycles over the monitored cards.

    Args:
        board: Board client.
        gateway: Channel gateway for all outgoing messages.
        card_store: Card state store.
        config_store: Runtime configuration store.
        clock: Time source; the system clock by default.
        config: Process settings.
    """

    def __init__(
        self,
        *,
        board: TrelloClient,
        gateway: ChannelGateway,
        card_store: CardStateStore,
        config_store: ConfigStore,
        clock: Clock | None = None,
        config: Settings | None = None,
    ):
        self.board = board
        self.gateway = gateway
        self.card_store = card_store
        self.config_store = config_store
        self.clock = clock or SystemClock()
        self.settings = config or settings
        self.last_report: CycleReport | None = None
        self._cycle_lock = asyncio.Lock()

    @property
    def cycle_running(self) -> bool:
        return self._cycle_lock.locked()

    async def aclose(self) -> None:
        await self.board.aclose()
        await self.gateway.aclose()

    async def run_cycle(self) -> CycleReport:
        """Run one poll cycle and return its report.

        Never raises for per-card or board failures; those end up in the
        report. A cycle requested while another is running is skipped.
        """
        with correlation_scope() as cycle_id:
            report = CycleReport(correlation_id=cycle_id, started_at=self.clock.now())

            if self._cycle_lock.locked():
                logger.warning("Poll cycle already running, skipping")
                report.skipped = True
                report.abort_reason = "Cycle already in progress"
                report.finished_at = self.clock.now()
                return report

            async with self._cycle_lock:
                await self._run_cycle(report)

            report.finished_at = self.clock.now()
            self.last_report = report
            logger.info(
                "Poll cycle finished",
                cards_seen=report.cards_seen,
                processed=report.processed,
                sent=report.sent,
                resolved=report.resolved,
                failed=report.failed,
                deferred=report.deferred,
                conflicts=report.conflicts,
                aborted=report.aborted,
            )
            return report

    def _abort(self, report: CycleReport, reason: str) -> None:
        report.aborted = True
        report.abort_reason = report.abort_reason or reason

    async def _run_cycle(self, report: CycleReport) -> None:
        logger.info("Starting poll cycle")

        try:
            config = await self.config_store.snapshot()
        except ConfigurationInvalid as e:
            logger.error("Monitoring config is invalid, cycle aborted", error=str(e))
            self._abort(report, str(e))
            return
        except SQLAlchemyError as e:
            logger.error("Could not load monitoring config", error=str(e))
            self._abort(report, f"Database error: {e}")
            return

        if config.monitoring_paused:
            logger.info("Monitoring is paused, cycle skipped")
            report.skipped = True
            return

        try:
            board_cards = await self.board.list_monitored_cards()
        except ExternalApiUnavailable as e:
            logger.error("Board unavailable, cycle aborted", error=str(e))
            self._abort(report, str(e))
            return

        directory = self.settings.recipient_directory
        observations = [observe(card, directory) for card in board_cards]
        try:
            sync = await self.card_store.sync_observed(
                observations,
                self.clock.now(),
                archive_missing=len(board_cards) < self.settings.max_cards_per_cycle,
            )
        except SQLAlchemyError as e:
            logger.error("Card sync failed, cycle aborted", error=str(e))
            self._abort(report, f"Database error: {e}")
            return

        report.cards_seen = len(sync.active)
        report.archived = sync.archived
        report.new_cycles = sync.new_cycles

        await self._process_all(sync.active, config, report)

    async def _process_all(
        self,
        cards: list[CardSnapshot],
        config: ConfigSnapshot,
        report: CycleReport,
    ) -> None:
        """Run card pipelines on ``worker_pool_size`` workers.

        Workers stop starting new cards once the deadline passes or the
        cycle is aborted; cards they skip are counted as deferred.
        """
        queue: asyncio.Queue[CardSnapshot] = asyncio.Queue()
        for card in cards:
            queue.put_nowait(card)

        deadline = report.started_at + timedelta(
            seconds=self.settings.cycle_deadline_seconds
        )
        stop = asyncio.Event()

        async def worker() -> None:
            while True:
                try:
                    card = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                if stop.is_set() or self.clock.now() >= deadline:
                    report.deferred += 1
                    continue
                await self._run_card(card, config, report, stop)

        workers = min(self.settings.worker_pool_size, len(cards))
        async with asyncio.TaskGroup() as tg:
            for _ in range(workers):
                tg.create_task(worker())

        if report.deferred and not report.aborted:
            logger.warning("Cycle deadline reached", deferred=report.deferred)

    async def _run_card(
        self,
        card: CardSnapshot,
        config: ConfigSnapshot,
        report: CycleReport,
        stop: asyncio.Event,
    ) -> None:
        try:
            outcome = await self.process_card(card, config)
        except ExternalApiUnavailable as e:
            report.failed += 1
            stop.set()
            self._abort(report, str(e))
            logger.error(
                "Board unavailable during card pipeline, stopping cycle",
                card_id=card.card_id,
                error=str(e),
            )
        except PersistenceConflict as e:
            report.conflicts += 1
            logger.info("Card already handled", card_id=card.card_id, detail=str(e))
        except Exception as e:
            report.failed += 1
            logger.error(
                "Card pipeline failed",
                exc_info=True,
                card_id=card.card_id,
                error=str(e),
            )
        else:
            report.processed += 1
            match outcome:
                case CardOutcome.sent:
                    report.sent += 1
                case CardOutcome.resolved:
                    report.resolved += 1
                case CardOutcome.failed | CardOutcome.released:
                    report.failed += 1
                case CardOutcome.idle:
                    pass

    async def process_card(
        self, card: CardSnapshot, config: ConfigSnapshot
    ) -> CardOutcome:
        """Run one card through detect, decide, claim, send and record.

        Raises:
            ExternalApiUnavailable: The board could not be read.
            PersistenceConflict: Another writer got there first.
            MalformedActivityError: The card's activity could not be read.
        """
        state = card.escalation_state

        if state.last_contact_at is not None and not state.is_terminal:
            check = await has_new_response(self.board, card)
            if check.responded:
                await self.card_store.mark_responded(card, check.responded_at)
                return CardOutcome.resolved

        now = self.clock.now()
        action = decide(card, now, config)
        if not action.sends:
            logger.debug(
                "No action for card",
                card_id=card.card_id,
                skip_reason=action.skip_reason,
            )
            return CardOutcome.idle

        deliveries, targets = build_deliveries(card, action, config, now)
        claim = await self.card_store.claim(card, action, now, targets)
        logger.info(
            "Escalation claimed",
            card_id=card.card_id,
            kind=action.kind.value,
            level=action.level,
            cycle=state.cycle,
            channels=[c.value for c in action.channels],
        )

        results: list[DeliveryResult] = []
        try:
            for delivery in deliveries:
                results.append(await self.gateway.send(delivery))
        except Exception as e:
            # The level is claimed; the rest of it is recorded as failed
            logger.error(
                "Delivery interrupted",
                exc_info=True,
                card_id=card.card_id,
                level=action.level,
            )
            results.extend(
                DeliveryResult.unexpected(delivery, e)
                for delivery in deliveries[len(results) :]
            )
        return await self._record(claim, results)

    async def _record(self, claim: Claim, results: list[DeliveryResult]) -> CardOutcome:
        card_id = claim.card.card_id

        if results and all(not r.success and r.transient for r in results):
            await self.card_store.release_claim(claim, [r.to_record() for r in results])
            logger.warning(
                "All deliveries failed transiently, level released for retry",
                card_id=card_id,
                level=claim.action.level,
            )
            return CardOutcome.released

        if not results:
            results = [undeliverable(claim.action)]

        needs_attention = any(not r.success and not r.transient for r in results)
        await self.card_store.record_outcome(
            claim,
            [r.to_record() for r in results],
            needs_attention=needs_attention,
        )

        if any(r.success for r in results):
            return CardOutcome.sent

        logger.error(
            "Escalation could not be delivered",
            card_id=card_id,
            level=claim.action.level,
            errors=[r.error_class for r in results],
        )
        return CardOutcome.failed

    async def set_paused(self, paused: bool) -> ConfigSnapshot:
        """Pause or resume monitoring for all cards."""
        await self.config_store.update(MonitoringConfigUpdate(monitoring_paused=paused))
        logger.info("Monitoring paused" if paused else "Monitoring resumed")
        return await self.config_store.snapshot()


_service: MonitoringService | None = None


def build_monitoring_service(
    config: Settings | None = None,
    clock: Clock | None = None,
) -> MonitoringService:
    """Wire a MonitoringService against the real board, providers and DB."""
    config = config or settings
    clock = clock or SystemClock()
    board = TrelloClient(config)
    gateway = ChannelGateway(
        board,
        EmailProvider(config),
        SmsProvider(config),
        TelegramBot(config),
        clock=clock,
        config=config,
    )
    session_maker = get_session_maker()
    return MonitoringService(
        board=board,
        gateway=gateway,
        card_store=SqlCardStateStore(session_maker),
        config_store=SqlConfigStore(session_maker, config),
        clock=clock,
        config=config,
    )


def get_monitoring_service() -> MonitoringService:
    """Process-wide service instance (FastAPI dependency)."""
    global _service
    if _service is None:
        _service = build_monitoring_service()
    return _service


async def close_monitoring_service() -> None:
    global _service
    if _service is not None:
        await _service.aclose()
        _service = None
