"""
Tests for the inbound SMS dispatcher: dedup, the two-step password protocol,
routing and reply delivery.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from pigeon.clients.sms_client import NotifyResult
from pigeon.models.internal_models import (
    Chain,
    InboundSms,
    IntentParams,
    IntentResult,
    IntentType
)
from pigeon.services import replies
from pigeon.services.event_dedup import ProcessedEventStore
from pigeon.services.session_store import InMemorySessionStore
from pigeon.services.sms_dispatcher import InvalidEventError, SmsDispatcher
from pigeon.services.wallet_service import WalletRegistry
from pigeon.utils.scheduler import DelayedTaskScheduler

SENDER = "+19912345678"
PHONE = "9912345678"
BOB = "9990001111"


def intent(intent_type, **params):
    return IntentResult(intent=intent_type, params=IntentParams(**params), raw_message="")


def event(content, event_id=None, event_type="message.phone.received", sender=SENDER):
    return InboundSms(event_id=event_id, event_type=event_type, sender=sender, content=content, owner="+15550000000")


class TestSmsDispatcher:

    @pytest.fixture
    def classifier(self):
        classifier = Mock()
        classifier.is_configured = True
        classifier.classify = AsyncMock(return_value=intent(IntentType.UNKNOWN))
        return classifier

    @pytest.fixture
    def notifier(self):
        notifier = Mock()
        notifier.send = AsyncMock(return_value=NotifyResult(success=True))
        return notifier

    @pytest.fixture
    def scheduler(self):
        scheduler = Mock()
        scheduler.schedule.return_value = Mock()
        return scheduler

    @pytest.fixture
    def wallets(self, algorand_wallet, solana_wallet):
        return WalletRegistry({Chain.ALGORAND: algorand_wallet, Chain.SOLANA: solana_wallet})

    @pytest.fixture
    def dispatcher(self, classifier, wallets, notifier, scheduler, clock):
        return SmsDispatcher(
            classifier=classifier,
            wallets=wallets,
            sessions=InMemorySessionStore(),
            processed_events=ProcessedEventStore(ttl_seconds=300, clock=clock),
            notifier=notifier,
            scheduler=scheduler,
            session_ttl_seconds=300,
            warning_delay_seconds=2.0,
            history_limit=5,
            clock=clock
        )

    async def onboard(self, wallet, phone=PHONE, password="mypass123", balance=0):
        result = await wallet.onboard(phone, password)
        wallet.client.balances[result.address] = balance
        return result.address

    @pytest.mark.asyncio
    async def test_balance_query(self, dispatcher, classifier, notifier, scheduler, algorand_wallet):
        await self.onboard(algorand_wallet, balance=1_500_000)
        classifier.classify.return_value = intent(IntentType.GET_BALANCE)

        outcome = await dispatcher.handle_event(event("balance", event_id="evt-1"))

        assert outcome.status == "processed"
        assert outcome.reply == "$$ Balance: 1.500000 ALGO"
        assert outcome.sms_sent is True
        assert outcome.security_warning_queued is False
        notifier.send.assert_awaited_once_with(SENDER, "$$ Balance: 1.500000 ALGO")
        scheduler.schedule.assert_not_called()

    @pytest.mark.asyncio
    async def test_balance_routes_to_chain(self, dispatcher, classifier, solana_wallet):
        await self.onboard(solana_wallet, balance=250_000_000)
        classifier.classify.return_value = intent(IntentType.GET_BALANCE, asset="SOL", chain=Chain.SOLANA)

        result = await dispatcher.process_message(SENDER, "sol balance")

        assert result.reply == "$$ Balance: 0.250000000 SOL"

    @pytest.mark.asyncio
    async def test_two_step_send(self, dispatcher, classifier, notifier, scheduler, algorand_wallet, chain_client):
        await self.onboard(algorand_wallet, balance=5_000_000)
        await self.onboard(algorand_wallet, phone=BOB, password="bobpass")
        classifier.classify.return_value = intent(IntentType.SEND, amount="1", asset="ALGO", recipient=BOB)

        prompt = await dispatcher.handle_event(event("send 1 ALGO to 9990001111", event_id="evt-1"))

        assert prompt.reply == "<< Send 1 ALGO to 9990001111\n\n~~ Reply with your password to confirm:"
        assert prompt.contained_password is False
        assert chain_client.transfers == []

        confirmed = await dispatcher.handle_event(event("mypass123", event_id="evt-2"))

        assert classifier.classify.await_count == 1
        assert confirmed.reply == (
            "<< Sent 1 ALGO to 9990001111\nTx ID: TX1\nConfirmed in round: 101\n"
            "# Explorer: https://explorer.test/tx/TX1"
        )
        assert confirmed.contained_password is True
        assert confirmed.security_warning_queued is True
        assert len(chain_client.transfers) == 1
        scheduler.schedule.assert_called_once_with(
            2.0,
            dispatcher.send_security_warning,
            SENDER,
            name=f"security-warning-{PHONE}"
        )

    @pytest.mark.asyncio
    async def test_one_step_onboard(self, dispatcher, classifier, scheduler):
        classifier.classify.return_value = intent(IntentType.ONBOARD, password="mypass123")

        outcome = await dispatcher.handle_event(event("create wallet password mypass123", event_id="evt-1"))

        assert outcome.reply.startswith("Welcome! Your Algorand wallet has been created.\nAddress: ADDR-")
        assert outcome.contained_password is True
        scheduler.schedule.assert_called_once()

    @pytest.mark.asyncio
    async def test_two_step_onboard_on_solana(self, dispatcher, classifier, solana_wallet):
        classifier.classify.return_value = intent(IntentType.ONBOARD, chain=Chain.SOLANA)

        prompt = await dispatcher.process_message(SENDER, "create solana wallet")
        assert prompt.reply.startswith("Let's create your Solana wallet!")

        created = await dispatcher.process_message(SENDER, "  hunter2  ")

        assert created.contained_password is True
        assert (await solana_wallet.export_secret(PHONE, "hunter2")).success

    @pytest.mark.asyncio
    async def test_duplicate_event(self, dispatcher, classifier, notifier):
        classifier.classify.return_value = intent(IntentType.GET_ADDRESS)

        first = await dispatcher.handle_event(event("address", event_id="evt-1"))
        second = await dispatcher.handle_event(event("address", event_id="evt-1"))

        assert first.status == "processed"
        assert second.status == "duplicate"
        assert classifier.classify.await_count == 1
        assert notifier.send.await_count == 1

    @pytest.mark.asyncio
    async def test_non_received_event_acknowledged(self, dispatcher, classifier, notifier):
        outcome = await dispatcher.handle_event(event("x", event_id="evt-1", event_type="message.phone.sent"))

        assert outcome.status == "acknowledged"
        classifier.classify.assert_not_awaited()
        notifier.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_received_event_without_content(self, dispatcher):
        with pytest.raises(InvalidEventError):
            await dispatcher.handle_event(event("", event_id="evt-1"))

    @pytest.mark.asyncio
    async def test_wrong_password_clears_session(self, dispatcher, classifier, algorand_wallet, chain_client):
        await self.onboard(algorand_wallet, balance=5_000_000)
        classifier.classify.return_value = intent(IntentType.EXPORT_SECRET)

        await dispatcher.process_message(SENDER, "get pvt key")
        failed = await dispatcher.process_message(SENDER, "wrongpass")

        assert failed.reply == "!!! Key export failed: Wrong password. Please start your command again."
        assert failed.contained_password is True

        classifier.classify.return_value = intent(IntentType.UNKNOWN)
        retry = await dispatcher.process_message(SENDER, "mypass123")

        assert retry.reply == replies.HELP_MESSAGE
        assert classifier.classify.await_count == 2

    @pytest.mark.asyncio
    async def test_expired_session(self, dispatcher, classifier, clock, chain_client):
        classifier.classify.return_value = intent(IntentType.SEND, amount="1", recipient="ADDR-x")
        await dispatcher.process_message(SENDER, "send 1 to ADDR-x")

        clock.advance(301)
        result = await dispatcher.process_message(SENDER, "mypass123")

        assert result.reply == replies.SESSION_EXPIRED
        assert result.contained_password is False
        assert chain_client.transfers == []

    @pytest.mark.asyncio
    async def test_empty_password_reply(self, dispatcher, classifier):
        classifier.classify.return_value = intent(IntentType.EXPORT_SECRET)
        await dispatcher.process_message(SENDER, "export key")

        result = await dispatcher.process_message(SENDER, "\r\n\x00\r\n")

        assert result.reply == replies.EMPTY_PASSWORD

    @pytest.mark.asyncio
    async def test_session_keyed_by_normalized_phone(self, dispatcher, classifier, algorand_wallet):
        await self.onboard(algorand_wallet)
        classifier.classify.return_value = intent(IntentType.EXPORT_SECRET)

        await dispatcher.process_message("+1 991 234 5678", "export key")
        result = await dispatcher.process_message("9912345678", "mypass123")

        assert result.reply.startswith("# Your private key:")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params,expected", [
        ({"amount": "1"}, "!!! Recipient is required."),
        ({"amount": "ten", "recipient": BOB}, '!!! Invalid amount "ten".'),
        ({"amount": "1", "recipient": BOB, "asset": "USDC"}, "!!! Unsupported asset USDC."),
    ])
    async def test_send_validation_does_not_create_session(self, dispatcher, classifier, params, expected):
        classifier.classify.return_value = intent(IntentType.SEND, **params)

        result = await dispatcher.process_message(SENDER, "send")

        assert result.reply.startswith(expected)
        assert len(dispatcher.sessions) == 0

    @pytest.mark.asyncio
    async def test_fund_reply(self, dispatcher, classifier, algorand_wallet, chain_client):
        await self.onboard(algorand_wallet)
        chain_client.balances["ADDR-admin"] = 10_000_000
        classifier.classify.return_value = intent(IntentType.FUND)

        first = await dispatcher.process_message(SENDER, "fund me")
        second = await dispatcher.process_message(SENDER, "fund me")

        assert first.reply.startswith("# Funded 1 ALGO to your wallet!")
        assert second.reply.startswith("!!! Fund failed: You can only be funded once per day.")

    @pytest.mark.asyncio
    async def test_transactions_reply(self, dispatcher, classifier, algorand_wallet):
        await self.onboard(algorand_wallet)
        classifier.classify.return_value = intent(IntentType.GET_TRANSACTIONS)

        result = await dispatcher.process_message(SENDER, "get txn")

        assert result.reply == "# No transactions found for your account."

    @pytest.mark.asyncio
    async def test_not_onboarded_reply(self, dispatcher, classifier):
        classifier.classify.return_value = intent(IntentType.GET_ADDRESS)

        result = await dispatcher.process_message(SENDER, "address")

        assert result.reply == "!!! Address lookup failed: Account not found or not onboarded"

    @pytest.mark.asyncio
    async def test_classifier_not_configured(self, dispatcher, classifier):
        classifier.is_configured = False

        result = await dispatcher.process_message(SENDER, "balance")

        assert result.reply == replies.CLASSIFIER_NOT_CONFIGURED
        classifier.classify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_processing_error_becomes_reply(self, dispatcher, classifier):
        classifier.classify.side_effect = RuntimeError("boom")

        result = await dispatcher.process_message(SENDER, "balance")

        assert result.reply == "!!! Processing failed: boom"

    @pytest.mark.asyncio
    async def test_deliver_false_skips_notifier(self, dispatcher, classifier, notifier, scheduler):
        classifier.classify.return_value = intent(IntentType.ONBOARD, password="mypass123")

        outcome = await dispatcher.handle_event(event("create wallet pw mypass123"), deliver=False)

        assert outcome.contained_password is True
        assert outcome.sms_sent is None
        notifier.send.assert_not_awaited()
        scheduler.schedule.assert_not_called()

    @pytest.mark.asyncio
    async def test_notifier_failure_reported(self, dispatcher, classifier, notifier):
        notifier.send.return_value = NotifyResult(success=False, error="httpSMS API 500: oops")

        outcome = await dispatcher.handle_event(event("hello", event_id="evt-1"))

        assert outcome.status == "processed"
        assert outcome.sms_sent is False
        assert outcome.sms_send_error == "httpSMS API 500: oops"

    @pytest.mark.asyncio
    async def test_security_warning_follows_reply(self, dispatcher, classifier, notifier):
        dispatcher.scheduler = DelayedTaskScheduler()
        dispatcher.warning_delay_seconds = 0
        classifier.classify.return_value = intent(IntentType.ONBOARD, password="mypass123")

        await dispatcher.handle_event(event("create wallet password mypass123", event_id="evt-1"))
        await asyncio.sleep(0.2)
        await dispatcher.scheduler.shutdown()

        assert notifier.send.await_count == 2
        assert notifier.send.await_args_list[1].args == (SENDER, replies.SECURITY_WARNING)

    @pytest.mark.asyncio
    async def test_messages_from_one_phone_are_serialized(self, dispatcher, classifier):
        active = set()
        snapshots = []

        async def slow_classify(message):
            active.add(message)
            snapshots.append(set(active))
            await asyncio.sleep(0.01)
            active.discard(message)
            return intent(IntentType.UNKNOWN)

        classifier.classify.side_effect = slow_classify

        await asyncio.gather(
            dispatcher.process_message(SENDER, "alice one"),
            dispatcher.process_message(SENDER, "alice two"),
            dispatcher.process_message("+15551234567", "carol")
        )

        assert not any({"alice one", "alice two"} <= snapshot for snapshot in snapshots)
        assert {"alice one", "carol"} in snapshots
