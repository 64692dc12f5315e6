"""
tests/unit/test_intent_parser.py - Message to intent parsing.
"""

import pytest

from crosschain_transfer.intent_parser import (
    AlertIntent,
    ClarificationNeeded,
    FallbackIntentResolver,
    LocalIntentParser,
    ParseContext,
    QueryIntent,
    SwapAndTransferIntent,
    TransferIntent,
    classify_confirmation,
    find_address,
    is_bare_reply,
)
from crosschain_transfer.models import OptimizationPolicy
from tests.conftest import EVM_ADDRESS, OTHER_EVM_ADDRESS, SOLANA_ADDRESS


@pytest.fixture
def parser():
    return LocalIntentParser()


def parse(parser, text, **context):
    return parser.parse_text(text, ParseContext(**context))


class TestConfirmation:

    @pytest.mark.parametrize("text", ["yes", "Yes please", "ok, go ahead", "CONFIRM"])
    def test_yes(self, text):
        assert classify_confirmation(text) is True

    @pytest.mark.parametrize("text", ["no", "cancel it", "stop", "nevermind"])
    def test_no(self, text):
        assert classify_confirmation(text) is False

    @pytest.mark.parametrize("text", ["I don't know", "yes no", "what is the fee?", ""])
    def test_ambiguous(self, text):
        assert classify_confirmation(text) is None

    def test_bare_reply(self):
        assert is_bare_reply("yes please")
        assert not is_bare_reply("yes send 5 USDC")
        assert not is_bare_reply("hello")


class TestTransfers:

    def test_basic_transfer(self, parser):
        intent = parse(parser, f"Send 100 USDT to {EVM_ADDRESS} on Polygon")

        assert isinstance(intent, TransferIntent)
        assert intent.destination_address == EVM_ADDRESS
        assert intent.amount == 100
        assert intent.asset == "USDT"
        assert intent.destination_network == "polygon"
        assert intent.source_network is None
        assert intent.policy == OptimizationPolicy.CHEAPEST

    @pytest.mark.parametrize("amount_text,amount", [
        ("1,000", 1000),
        ("$12,500.75", 12500.75),
        (".5", 0.5),
        ("0.25", 0.25),
    ])
    def test_amount_formats(self, parser, amount_text, amount):
        intent = parse(parser, f"Send {amount_text} USDC to {EVM_ADDRESS} on Base")

        assert isinstance(intent, TransferIntent)
        assert intent.amount == pytest.approx(amount)
        assert intent.asset == "USDC"

    def test_grouped_alert_threshold(self, parser):
        intent = parse(parser, "Alert me when fees to Base drop below $1,200")
        assert intent.threshold == 1200

    def test_source_network_and_policy(self, parser):
        intent = parse(parser, f"move 25.5 usdc from base to {EVM_ADDRESS} on arbitrum asap")

        assert intent.amount == 25.5
        assert intent.source_network == "base"
        assert intent.destination_network == "arbitrum"
        assert intent.policy == OptimizationPolicy.FASTEST

    def test_solana_address(self, parser):
        intent = parse(parser, f"send 50 USDC to my Solana wallet {SOLANA_ADDRESS}")
        assert intent.destination_address == SOLANA_ADDRESS
        assert intent.destination_network == "solana"

    def test_connected_wallet_becomes_source_address(self, parser):
        intent = parse(parser, f"send 5 USDC to {EVM_ADDRESS}", connected_wallet=OTHER_EVM_ADDRESS)
        assert intent.source_address == OTHER_EVM_ADDRESS
        assert intent.asset == "USDC"

    def test_no_network_mentioned(self, parser):
        intent = parse(parser, f"send 5 USDC to {EVM_ADDRESS}")
        assert intent.destination_network is None


class TestClarification:

    def test_missing_address(self, parser):
        intent = parse(parser, "send 50 USDC")
        assert isinstance(intent, ClarificationNeeded)
        assert intent.missing_fields == ("destination_address",)
        assert intent.partial['amount'] == 50

    def test_missing_amount(self, parser):
        intent = parse(parser, f"send USDC to {EVM_ADDRESS}")
        assert intent.missing_fields == ("amount",)

    def test_missing_everything(self, parser):
        intent = parse(parser, "I want to bridge something")
        assert set(intent.missing_fields) == {"amount", "destination_address"}


class TestSwapAlertsQueries:

    def test_swap_and_send(self, parser):
        intent = parse(parser, f"Swap my 500 USDm to USDC and send to {EVM_ADDRESS} on Base")

        assert isinstance(intent, SwapAndTransferIntent)
        assert (intent.from_asset, intent.to_asset, intent.amount) == ("USDm", "USDC", 500)
        assert intent.destination_network == "base"

    def test_fee_alert(self, parser):
        intent = parse(parser, "Alert me when fees to Base drop below $0.50")

        assert isinstance(intent, AlertIntent)
        assert intent.condition == "fee_below"
        assert intent.threshold == 0.5
        assert intent.destination_network == "base"
        assert intent.action == "notify"

    def test_price_alert(self, parser):
        intent = parse(parser, "notify me when CELO price goes above $1.20")
        assert intent.condition == "price_above"
        assert intent.asset == "CELO"
        assert intent.threshold == 1.2

    def test_auto_execute_alert(self, parser):
        intent = parse(parser, f"when fees to base drop below $1 send 200 USDC to {EVM_ADDRESS}")

        assert intent.action == "auto_execute"
        assert intent.transfer.amount == 200
        assert intent.transfer.destination_address == EVM_ADDRESS
        assert intent.threshold == 1.0

    def test_alert_listing(self, parser):
        assert parse(parser, "show my alerts") == QueryIntent('alerts')

    def test_fee_check(self, parser):
        intent = parse(parser, "How much does it cost to send USDT to Polygon?")
        assert intent == QueryIntent('fee_check', asset='USDT', network='polygon')

    def test_price_check(self, parser):
        assert parse(parser, "what's the celo price").asset == "CELO"


class BrokenResolver:
    async def parse(self, text, context):
        raise ConnectionError("model endpoint unreachable")


class WrongTypeResolver:
    async def parse(self, text, context):
        return {"intent": "transfer"}


class FixedResolver:
    def __init__(self, intent):
        self.intent = intent

    async def parse(self, text, context):
        return self.intent


class TestFallback:

    @pytest.mark.asyncio
    async def test_uses_primary_when_it_answers(self):
        expected = QueryIntent('help')
        resolver = FallbackIntentResolver(FixedResolver(expected))
        assert await resolver.parse(f"send 5 USDC to {EVM_ADDRESS}") is expected

    @pytest.mark.asyncio
    @pytest.mark.parametrize("primary", [BrokenResolver(), WrongTypeResolver()])
    async def test_falls_back_to_local_parser(self, primary):
        resolver = FallbackIntentResolver(primary)
        intent = await resolver.parse(f"send 5 USDC to {EVM_ADDRESS}")
        assert isinstance(intent, TransferIntent)
        assert intent.amount == 5

    def test_find_address_prefers_evm(self):
        assert find_address(f"to {EVM_ADDRESS} please") == EVM_ADDRESS
