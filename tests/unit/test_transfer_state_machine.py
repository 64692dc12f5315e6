"""
tests/unit/test_transfer_state_machine.py - Transfer conversation lifecycle.
"""

import sqlite3
from datetime import timedelta

import pytest

from crosschain_transfer.errors import ProviderUnavailable
from crosschain_transfer.execution_dispatcher import ExecutionDispatcher
from crosschain_transfer.intent_parser import TransferIntent
from crosschain_transfer.models import ExecutionMethod, SessionState, SwapQuote, TransferSession
from crosschain_transfer.route_aggregator import RouteAggregator
from crosschain_transfer.transaction_history import TransactionHistoryDB
from crosschain_transfer.transfer_state_machine import (
    CONFIRM_PROMPT,
    ConfirmationReply,
    TransferStateMachine,
    UserMessage,
)
from tests.conftest import EVM_ADDRESS, FakePriceFeed, RecordingBroadcaster, StaticAdapter, make_quote


SEND_TO_BASE = f"Send 100 USDC to {EVM_ADDRESS} on Base"


class FakeSwapQuoter:
    def __init__(self, price_impact: float = 0.002):
        self.price_impact = price_impact
        self.requests = []

    async def quote_swap(self, network, from_asset, to_asset, amount):
        self.requests.append((network, from_asset, to_asset, amount))
        return SwapQuote("mento", network, from_asset, to_asset, amount, self.price_impact)


class NanFeeAdapter(StaticAdapter):
    """Answers with a fee the provider reported as NaN"""

    execution_method = ExecutionMethod.AXELAR_GMP

    async def fetch_quote(self, request):
        self.calls.append(request)
        return self._make_quote(float("nan"), 5, 0.97, 5_000_000)


class ExplodingHistory:
    """Ledger whose writes always fail"""

    def record_receipt(self, session_id, pending, receipt):
        raise sqlite3.OperationalError("disk I/O error")

    def record_failure(self, session_id, pending, failure):
        raise sqlite3.OperationalError("disk I/O error")


def build_machine(config, adapters, broadcaster=None, **kwargs):
    return TransferStateMachine(
        aggregator=RouteAggregator(adapters, config),
        dispatcher=ExecutionDispatcher(broadcaster or RecordingBroadcaster(), config),
        config=config,
        **kwargs,
    )


@pytest.fixture
def session():
    return TransferSession(session_id="session-1")


async def say(machine, session, text):
    return await machine.advance(session, UserMessage(text))


class TestPreviewAndConfirm:

    @pytest.mark.asyncio
    async def test_transfer_reaches_confirmation(self, state_machine, session):
        result = await say(state_machine, session, SEND_TO_BASE)

        assert result.state == SessionState.AWAITING_CONFIRMATION
        assert session.state == SessionState.AWAITING_CONFIRMATION
        assert session.pending_transfer is not None
        assert result.data['best']['provider_id'] == "axelar"
        assert [q['provider_id'] for q in result.data['alternatives']] == ["layerzero"]
        assert result.data['validation']['valid'] is True
        assert "Reply YES to confirm" in result.message

    @pytest.mark.asyncio
    async def test_yes_dispatches_and_returns_to_idle(self, state_machine, session, broadcaster):
        await say(state_machine, session, SEND_TO_BASE)
        result = await say(state_machine, session, "yes")

        assert result.state == SessionState.IDLE
        assert session.pending_transfer is None
        assert broadcaster.actions() == ["approve", "gateway_send_token"]
        assert result.data['receipt']['provider_id'] == "axelar"
        assert "Transfer submitted successfully" in result.message

    @pytest.mark.asyncio
    async def test_no_cancels_without_dispatch(self, state_machine, session, broadcaster):
        await say(state_machine, session, SEND_TO_BASE)
        result = await say(state_machine, session, "no thanks")

        assert result.state == SessionState.IDLE
        assert session.pending_transfer is None
        assert broadcaster.submissions == []
        assert "cancelled" in result.message

    @pytest.mark.asyncio
    async def test_ambiguous_reply_reprompts(self, state_machine, session, broadcaster):
        await say(state_machine, session, SEND_TO_BASE)
        result = await say(state_machine, session, "hmm, I don't know")

        assert result.message == CONFIRM_PROMPT
        assert session.state == SessionState.AWAITING_CONFIRMATION
        assert broadcaster.submissions == []

    @pytest.mark.asyncio
    async def test_explicit_confirmation_event(self, state_machine, session, broadcaster):
        await say(state_machine, session, SEND_TO_BASE)
        result = await state_machine.advance(session, ConfirmationReply(True))

        assert result.state == SessionState.IDLE
        assert broadcaster.actions()[-1] == "gateway_send_token"

    @pytest.mark.asyncio
    async def test_dispatches_at_most_once(self, state_machine, session, broadcaster):
        await say(state_machine, session, SEND_TO_BASE)
        await say(state_machine, session, "yes")
        second = await say(state_machine, session, "yes")

        assert len(broadcaster.submissions) == 2
        assert second.state == SessionState.IDLE
        assert "no pending transaction" in second.message

    @pytest.mark.asyncio
    async def test_fastest_policy_picks_fastest_provider(self, state_machine, session, broadcaster):
        result = await say(state_machine, session, f"Send 100 USDC to {EVM_ADDRESS} on Base, fastest please")
        assert result.data['best']['provider_id'] == "layerzero"

        await say(state_machine, session, "confirm")
        assert broadcaster.actions() == ["approve", "stargate_swap"]


class TestBlockedBeforeConfirmation:

    @pytest.mark.asyncio
    async def test_hard_stop_on_fee_ratio(self, config, session):
        machine = build_machine(config, [StaticAdapter(config, "axelar", make_quote("axelar", fee_usd=60))])

        result = await say(machine, session, SEND_TO_BASE)

        assert result.state == SessionState.IDLE
        assert session.pending_transfer is None
        assert result.data['failure_kind'] == "hard_stop_fee_ratio"
        assert result.data['fee_ratio'] == pytest.approx(0.6)
        assert "too high to proceed" in result.message

    @pytest.mark.asyncio
    async def test_guardrail_errors_block(self, state_machine, session):
        result = await say(state_machine, session, f"Send 100 USDm to {EVM_ADDRESS} on Base")

        assert result.state == SessionState.IDLE
        assert result.data['failure_kind'] == "validation_failed"
        assert any("Swap USDm to USDC" in s for s in result.data['validation']['suggestions'])

    @pytest.mark.asyncio
    async def test_no_route(self, config, session):
        machine = build_machine(config, [
            StaticAdapter(config, "axelar", error=ProviderUnavailable("HTTP 503")),
        ])

        result = await say(machine, session, SEND_TO_BASE)

        assert result.state == SessionState.IDLE
        assert result.data['failure_kind'] == "no_route_found"
        assert "couldn't find a working route" in result.message

    @pytest.mark.asyncio
    async def test_nan_fee_never_reaches_confirmation(self, config, session):
        machine = build_machine(config, [NanFeeAdapter(config, "axelar")])

        result = await say(machine, session, SEND_TO_BASE)

        assert result.state == SessionState.IDLE
        assert session.pending_transfer is None
        assert result.data['failure_kind'] == "no_route_found"
        assert "$nan" not in result.message

    @pytest.mark.asyncio
    async def test_nan_fee_provider_is_skipped(self, config, session):
        machine = build_machine(config, [
            NanFeeAdapter(config, "axelar"),
            StaticAdapter(config, "layerzero", make_quote(
                "layerzero", fee_usd=0.51, execution_method=ExecutionMethod.LAYERZERO_STARGATE
            )),
        ])

        result = await say(machine, session, SEND_TO_BASE)

        assert result.state == SessionState.AWAITING_CONFIRMATION
        assert result.data['best']['provider_id'] == "layerzero"
        assert result.data['alternatives'] == []

    @pytest.mark.asyncio
    async def test_quotes_without_executable_provider(self, config, session):
        machine = build_machine(config, [
            StaticAdapter(config, "across", make_quote(
                "across", execution_ready=False, execution_method=ExecutionMethod.ACROSS_RELAY
            )),
        ])

        result = await say(machine, session, SEND_TO_BASE)

        assert result.state == SessionState.IDLE
        assert "can be executed automatically" in result.message

    @pytest.mark.asyncio
    async def test_unknown_network_asks_for_it(self, state_machine, session):
        intent = TransferIntent(destination_address="somewhere-unknown", asset="USDC", amount=10)

        result = await state_machine.advance(session, intent)

        assert result.state == SessionState.IDLE
        assert "destination network" in result.message


class TestIdleReplies:

    @pytest.mark.asyncio
    async def test_yes_while_idle_is_a_no_op(self, state_machine, session, adapters, broadcaster):
        result = await say(state_machine, session, "yes")

        assert result.state == SessionState.IDLE
        assert session.pending_transfer is None
        assert "no pending transaction" in result.message
        assert all(adapter.calls == [] for adapter in adapters)
        assert broadcaster.submissions == []

    @pytest.mark.asyncio
    async def test_confirmation_event_while_idle(self, state_machine, session):
        result = await state_machine.advance(session, ConfirmationReply(True))
        assert result.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_missing_fields_ask_for_clarification(self, state_machine, session):
        result = await say(state_machine, session, "send 50 USDC")
        assert result.state == SessionState.IDLE
        assert "Where should I send it" in result.message

    @pytest.mark.asyncio
    async def test_busy_session_reports_progress(self, state_machine, session):
        session.state = SessionState.EXECUTING
        result = await say(state_machine, session, "what's happening?")
        assert result.state == SessionState.EXECUTING
        assert "still being submitted" in result.message


class TestExpiry:

    @pytest.mark.asyncio
    async def test_stale_confirmation_is_released(self, state_machine, session, broadcaster):
        await say(state_machine, session, SEND_TO_BASE)
        session.pending_transfer.created_at -= timedelta(seconds=901)

        result = await say(state_machine, session, "yes")

        assert result.state == SessionState.IDLE
        assert session.pending_transfer is None
        assert "expired" in result.message
        assert broadcaster.submissions == []

    @pytest.mark.asyncio
    async def test_no_expiry_when_disabled(self, config, adapters, session):
        config.confirmation_ttl_seconds = None
        broadcaster = RecordingBroadcaster()
        machine = build_machine(config, adapters, broadcaster)

        await say(machine, session, SEND_TO_BASE)
        session.pending_transfer.created_at -= timedelta(days=1)
        result = await say(machine, session, "yes")

        assert "Transfer submitted successfully" in result.message


class TestDispatchFailure:

    @pytest.mark.asyncio
    async def test_failure_reports_error_and_resets(self, config, adapters, session):
        history = TransactionHistoryDB(":memory:")
        machine = build_machine(config, adapters, RecordingBroadcaster(fail_on="gateway_send_token"),
                                history=history)

        await say(machine, session, SEND_TO_BASE)
        transfer_id = session.pending_transfer.transfer_id
        result = await say(machine, session, "yes")

        assert result.state == SessionState.ERROR
        assert result.data['failure_kind'] == "execution_step_failed"
        assert result.data['failure']['step'] == "submission"
        assert session.state == SessionState.IDLE
        assert session.pending_transfer is None
        assert "no funds were transferred" in result.message

        row = history.get_transfer(transfer_id)
        assert row['success'] == 0
        assert row['failed_step'] == "submission"
        assert len(history.get_errors(transfer_id)) == 1
        history.close()

    @pytest.mark.asyncio
    async def test_next_request_after_failure_starts_fresh(self, config, adapters, session):
        machine = build_machine(config, adapters, RecordingBroadcaster(fail_on="approve"))

        await say(machine, session, SEND_TO_BASE)
        await say(machine, session, "yes")
        result = await say(machine, session, SEND_TO_BASE)

        assert result.state == SessionState.AWAITING_CONFIRMATION

    @pytest.mark.asyncio
    async def test_receipt_recorded_in_history(self, config, adapters, session):
        history = TransactionHistoryDB(":memory:")
        machine = build_machine(config, adapters, history=history)

        await say(machine, session, SEND_TO_BASE)
        await say(machine, session, "yes")

        rows = history.get_transfers_by_session("session-1")
        assert len(rows) == 1
        assert rows[0]['success'] == 1
        assert [t['transaction_type'] for t in history.get_transactions(rows[0]['transfer_id'])] == [
            "authorization", "transfer"
        ]

    @pytest.mark.asyncio
    async def test_history_error_keeps_receipt(self, config, adapters, session, broadcaster):
        machine = build_machine(config, adapters, broadcaster, history=ExplodingHistory())

        await say(machine, session, SEND_TO_BASE)
        result = await say(machine, session, "yes")

        assert result.state == SessionState.IDLE
        assert result.data['receipt']['provider_id'] == "axelar"
        assert "Transfer submitted successfully" in result.message
        assert broadcaster.actions() == ["approve", "gateway_send_token"]

    @pytest.mark.asyncio
    async def test_closed_history_keeps_receipt(self, config, adapters, session):
        history = TransactionHistoryDB(":memory:")
        history.close()
        machine = build_machine(config, adapters, history=history)

        await say(machine, session, SEND_TO_BASE)
        result = await say(machine, session, "yes")

        assert result.data['receipt']['transfer_tx'].startswith("0x")
        assert "Transfer submitted successfully" in result.message
        history.close()


class TestOtherIntents:

    @pytest.mark.asyncio
    async def test_swap_then_transfer(self, config, adapters, session):
        broadcaster = RecordingBroadcaster()
        swapper = FakeSwapQuoter()
        machine = build_machine(config, adapters, broadcaster, swap_quoter=swapper)

        preview = await say(machine, session, f"Swap my 500 USDm to USDC and send to {EVM_ADDRESS} on Base")
        assert preview.state == SessionState.AWAITING_CONFIRMATION
        assert preview.data['swap'] == "mento"
        assert session.pending_transfer.request.route.amount == pytest.approx(499.0)
        assert swapper.requests == [("celo", "USDm", "USDC", 500.0)]

        await say(machine, session, "yes")
        assert broadcaster.actions() == ["swap", "approve", "gateway_send_token"]

    @pytest.mark.asyncio
    async def test_swap_unavailable(self, state_machine, session):
        result = await say(state_machine, session, f"Swap my 500 USDm to USDC and send to {EVM_ADDRESS} on Base")
        assert result.state == SessionState.IDLE
        assert "Swaps aren't available" in result.message

    @pytest.mark.asyncio
    async def test_alert_registration(self, state_machine, session, alert_monitor):
        result = await say(state_machine, session, "Alert me when fees to Base drop below $1")

        assert result.state == SessionState.IDLE
        alerts = alert_monitor.list("session-1")
        assert [a.alert_id for a in alerts] == [result.data['alert_id']]
        assert alerts[0].condition.threshold == 1.0
        assert alerts[0].condition.destination_network == "base"

    @pytest.mark.asyncio
    async def test_fee_check(self, state_machine, session):
        result = await say(state_machine, session, "How much does it cost to send USDC to Polygon?")
        assert "Best: axelar: $0.50" in result.message
        assert "Range: $0.50 - $0.51 across 2 provider(s)" in result.message
        assert [p['provider'] for p in result.data['fees']['providers']] == ["axelar", "layerzero"]

    @pytest.mark.asyncio
    async def test_fee_check_without_routes(self, config, session):
        machine = build_machine(config, [StaticAdapter(config, "axelar")])
        result = await say(machine, session, "How much does it cost to send USDC to Polygon?")
        assert "No route found for USDC to polygon" in result.message
        assert result.data['fees']['min_fee_usd'] is None

    @pytest.mark.asyncio
    async def test_price_check(self, config, adapters, session):
        machine = build_machine(config, adapters, price_feed=FakePriceFeed({'CELO': 0.7}))
        result = await say(machine, session, "What's the CELO price?")
        assert result.data == {'asset': 'CELO', 'price': 0.7}

    @pytest.mark.asyncio
    async def test_history_is_recorded(self, state_machine, session):
        await say(state_machine, session, "hello")
        roles = [t.role for t in session.history]
        assert roles == ["user", "assistant"]
