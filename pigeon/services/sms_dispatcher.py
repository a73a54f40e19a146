"""
Inbound SMS dispatcher.

Takes a normalized inbound event through deduplication, the two-step password
protocol and intent routing, then delivers the reply:

    event -> dedup -> subtype filter -> sanitize
          -> (resume pending session | classify) -> wallet operation
          -> reply -> (delayed security warning)

All work for one phone runs under that phone's session lock, so a phone's
messages are handled in the order they arrive while different phones run
concurrently.
"""

import logging
import time
from typing import Callable, Optional

from pigeon.clients.sms_client import HttpSmsNotifier
from pigeon.config import settings
from pigeon.models.internal_models import (
    DispatchOutcome,
    InboundSms,
    IntentResult,
    IntentType,
    PendingAction,
    PendingSession,
    SendParams,
    SmsProcessResult
)
from pigeon.observability import record_sms_message, record_webhook_event, trace_function
from pigeon.services import replies
from pigeon.services.event_dedup import ProcessedEventStore
from pigeon.services.intent_service import IntentClassifier, get_intent_classifier
from pigeon.services.session_store import InMemorySessionStore, SessionStore
from pigeon.services.wallet_service import (
    WalletOperations,
    WalletRegistry,
    get_wallet_registry,
    parse_amount
)
from pigeon.utils.phone import normalize_phone, sanitize_sms_text
from pigeon.utils.scheduler import DelayedTaskScheduler, close_task_scheduler, get_task_scheduler

logger = logging.getLogger(__name__)

RECEIVED_EVENT_TYPE = "message.phone.received"


class InvalidEventError(ValueError):
    """Raised when a received-message event lacks its sender or content."""
    pass


class SmsDispatcher:
    """Orchestrates one inbound SMS from webhook to reply."""

    def __init__(
        self,
        classifier: IntentClassifier,
        wallets: WalletRegistry,
        sessions: SessionStore,
        processed_events: ProcessedEventStore,
        notifier: HttpSmsNotifier,
        scheduler: DelayedTaskScheduler,
        session_ttl_seconds: float = 300.0,
        warning_delay_seconds: float = 2.0,
        history_limit: int = 5,
        clock: Callable[[], float] = time.time
    ):
        self.classifier = classifier
        self.wallets = wallets
        self.sessions = sessions
        self.processed_events = processed_events
        self.notifier = notifier
        self.scheduler = scheduler
        self.session_ttl_seconds = session_ttl_seconds
        self.warning_delay_seconds = warning_delay_seconds
        self.history_limit = history_limit
        self._clock = clock

    @trace_function("sms_dispatcher.handle_event")
    async def handle_event(self, event: InboundSms, deliver: bool = True) -> DispatchOutcome:
        """
        Process one webhook delivery.

        Args:
            event: Normalized inbound event
            deliver: Send the reply and warning through the notifier. Gateways
                that transmit the reply themselves pass False.

        Raises:
            InvalidEventError: If a received-message event has no sender or content
        """
        if event.event_id and not self.processed_events.mark_if_new(event.event_id):
            record_webhook_event(event.source, "duplicate")
            return DispatchOutcome(status="duplicate", message=f"Duplicate event {event.event_id} ignored")

        if event.event_type != RECEIVED_EVENT_TYPE:
            logger.info(f"Acknowledged non-received event: {event.event_type}")
            record_webhook_event(event.source, "acknowledged")
            return DispatchOutcome(status="acknowledged", message=f"Event {event.event_type} acknowledged")

        if not event.sender or not event.content:
            record_webhook_event(event.source, "rejected")
            raise InvalidEventError("Missing sender or content in received event")

        logger.info(f"Incoming SMS from {event.sender} via {event.source}")
        result = await self.process_message(event.sender, event.content, source=event.source)
        record_webhook_event(event.source, "processed")

        if not deliver:
            return DispatchOutcome(
                status="processed",
                message="SMS processed successfully",
                reply=result.reply,
                contained_password=result.contained_password
            )

        send_result = await self.notifier.send(event.sender, result.reply)

        warning_queued = False
        if result.contained_password:
            task = self.scheduler.schedule(
                self.warning_delay_seconds,
                self.send_security_warning,
                event.sender,
                name=f"security-warning-{normalize_phone(event.sender)}"
            )
            warning_queued = task is not None

        return DispatchOutcome(
            status="processed",
            message="SMS processed and reply sent",
            reply=result.reply,
            contained_password=result.contained_password,
            sms_sent=send_result.success,
            sms_send_error=send_result.error,
            security_warning_queued=warning_queued
        )

    async def send_security_warning(self, to: str) -> None:
        result = await self.notifier.send(to, replies.SECURITY_WARNING)
        if result.success:
            logger.info(f"Security warning sent to {to}")
        else:
            logger.warning(f"Failed to send security warning to {to}: {result.error}")

    async def process_message(self, sender: str, text: str, source: str = "httpsms") -> SmsProcessResult:
        """Turn one message into a reply. Never raises."""
        if not self.classifier.is_configured:
            return SmsProcessResult(reply=replies.CLASSIFIER_NOT_CONFIGURED)

        phone = normalize_phone(sender)
        message = sanitize_sms_text(text)

        async with self.sessions.lock(phone):
            try:
                pending = await self.sessions.get_and_clear(phone)
                if pending is not None:
                    return await self._resume(pending, message)
                return await self._classify_and_route(phone, message, source)
            except Exception as e:
                logger.exception(f"Intent processing error for {phone}: {e}")
                return SmsProcessResult(reply=replies.processing_failed(e))

    async def _resume(self, pending: PendingSession, message: str) -> SmsProcessResult:
        """Apply the message as the password of a consumed pending session."""
        if pending.is_expired(self._clock(), self.session_ttl_seconds):
            logger.info(f"Pending {pending.action.value} session for {pending.phone} expired")
            return SmsProcessResult(reply=replies.SESSION_EXPIRED)

        password = message.strip()
        if not password:
            return SmsProcessResult(reply=replies.EMPTY_PASSWORD)

        wallet = self.wallets.resolve(pending.chain)
        logger.info(f"Resuming pending {pending.action.value} on {pending.chain.value} for {pending.phone}")

        if pending.action is PendingAction.ONBOARD:
            return await self._execute_onboard(wallet, pending.phone, password)
        if pending.action is PendingAction.SEND:
            return await self._execute_send(wallet, pending.phone, password, pending.send_params)
        return await self._execute_export(wallet, pending.phone, password)

    async def _classify_and_route(self, phone: str, message: str, source: str) -> SmsProcessResult:
        if not message:
            record_sms_message(IntentType.UNKNOWN.value, source)
            return SmsProcessResult(reply=replies.HELP_MESSAGE)

        intent = await self.classifier.classify(message)
        record_sms_message(intent.intent.value, source)
        wallet = self.wallets.resolve(intent.params.chain)
        params = intent.params

        if intent.intent is IntentType.GET_BALANCE:
            result = await wallet.get_balance(phone, asset=params.asset)
            return SmsProcessResult(reply=replies.balance_reply(result))

        if intent.intent is IntentType.GET_ADDRESS:
            result = await wallet.get_address(phone)
            return SmsProcessResult(reply=replies.address_reply(result))

        if intent.intent is IntentType.GET_TRANSACTIONS:
            result = await wallet.get_transactions(phone, limit=self.history_limit)
            return SmsProcessResult(reply=replies.transactions_reply(result))

        if intent.intent is IntentType.FUND:
            result = await wallet.fund(phone)
            return SmsProcessResult(reply=replies.fund_reply(result))

        if intent.intent is IntentType.SEND:
            return await self._start_send(wallet, phone, intent)

        if intent.intent is IntentType.ONBOARD:
            if params.password:
                return await self._execute_onboard(wallet, phone, params.password)
            await self._store_session(phone, PendingAction.ONBOARD, wallet)
            return SmsProcessResult(reply=replies.onboard_prompt(wallet.chain_label))

        if intent.intent is IntentType.EXPORT_SECRET:
            if params.password:
                return await self._execute_export(wallet, phone, params.password)
            await self._store_session(phone, PendingAction.EXPORT_SECRET, wallet)
            return SmsProcessResult(reply=replies.export_prompt())

        return SmsProcessResult(reply=replies.HELP_MESSAGE)

    async def _start_send(self, wallet: WalletOperations, phone: str, intent: IntentResult) -> SmsProcessResult:
        params = intent.params
        if not params.recipient:
            return SmsProcessResult(reply=replies.missing_recipient())
        if parse_amount(params.amount) is None:
            return SmsProcessResult(reply=replies.invalid_amount(params.amount))
        if params.asset and params.asset.upper() != wallet.asset:
            return SmsProcessResult(reply=replies.unsupported_asset(params.asset))

        send_params = SendParams(amount=params.amount, recipient=params.recipient, asset=params.asset)
        if params.password:
            return await self._execute_send(wallet, phone, params.password, send_params)

        await self._store_session(phone, PendingAction.SEND, wallet, send_params)
        return SmsProcessResult(reply=replies.send_prompt(send_params.amount, wallet.asset, send_params.recipient))

    async def _store_session(
        self,
        phone: str,
        action: PendingAction,
        wallet: WalletOperations,
        send_params: Optional[SendParams] = None
    ) -> None:
        await self.sessions.set(phone, PendingSession(
            phone=phone,
            action=action,
            chain=wallet.chain,
            created_at=self._clock(),
            send_params=send_params
        ))
        logger.info(f"Awaiting password for {action.value} on {wallet.chain.value} from {phone}")

    async def _execute_onboard(self, wallet: WalletOperations, phone: str, password: str) -> SmsProcessResult:
        result = await wallet.onboard(phone, password)
        return SmsProcessResult(reply=replies.onboard_reply(result, wallet.chain_label), contained_password=True)

    async def _execute_send(
        self,
        wallet: WalletOperations,
        phone: str,
        password: str,
        params: SendParams
    ) -> SmsProcessResult:
        result = await wallet.send(phone, password, params)
        return SmsProcessResult(reply=replies.send_reply(result, params.recipient), contained_password=True)

    async def _execute_export(self, wallet: WalletOperations, phone: str, password: str) -> SmsProcessResult:
        result = await wallet.export_secret(phone, password)
        return SmsProcessResult(reply=replies.export_reply(result), contained_password=True)


# Global dispatcher instance
_sms_dispatcher: Optional[SmsDispatcher] = None


def get_sms_dispatcher() -> SmsDispatcher:
    """
    Get the global SMS dispatcher instance.

    Returns:
        SmsDispatcher: The global dispatcher wired from settings
    """
    global _sms_dispatcher
    if _sms_dispatcher is None:
        _sms_dispatcher = SmsDispatcher(
            classifier=get_intent_classifier(),
            wallets=get_wallet_registry(),
            sessions=InMemorySessionStore(),
            processed_events=ProcessedEventStore(ttl_seconds=settings.dedup_ttl_seconds),
            notifier=HttpSmsNotifier(),
            scheduler=get_task_scheduler(),
            session_ttl_seconds=settings.session_ttl_seconds,
            warning_delay_seconds=settings.security_warning_delay_seconds,
            history_limit=settings.transaction_history_limit
        )
    return _sms_dispatcher


async def close_sms_dispatcher() -> None:
    """Drain scheduled warnings, then close the notifier if the dispatcher was built."""
    global _sms_dispatcher
    await close_task_scheduler()
    if _sms_dispatcher is None:
        return

    dispatcher, _sms_dispatcher = _sms_dispatcher, None
    await dispatcher.notifier.aclose()
