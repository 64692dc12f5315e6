"""
Pytest configuration and shared fixtures for transfer agent tests.

This module provides:
- Static and failing provider adapters (no network access)
- A recording broadcaster with optional failures
- Quote / config builders
- A fully wired state machine and agent
"""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from crosschain_transfer.alert_monitor import AlertMonitor, InMemoryAlertStore
from crosschain_transfer.config import RouterConfig
from crosschain_transfer.errors import NetworkError, ProviderUnavailable
from crosschain_transfer.execution_dispatcher import ExecutionDispatcher
from crosschain_transfer.models import ExecutionMethod, Quote, RouteRequest
from crosschain_transfer.notifier import CollectingNotificationSink
from crosschain_transfer.providers import ProviderAdapter
from crosschain_transfer.route_aggregator import RouteAggregator
from crosschain_transfer.session_store import InMemorySessionStore
from crosschain_transfer.transfer_agent import TransferAgent
from crosschain_transfer.transfer_state_machine import TransferStateMachine


EVM_ADDRESS = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"
OTHER_EVM_ADDRESS = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"
SOLANA_ADDRESS = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


def make_quote(provider_id: str = "axelar", fee_usd: float = 0.5, eta_minutes: float = 5,
               success_rate: float = 0.97, liquidity_usd: float = 5_000_000,
               execution_ready: bool = True,
               execution_method: ExecutionMethod = ExecutionMethod.AXELAR_GMP) -> Quote:
    return Quote(
        provider_id=provider_id,
        fee_usd=fee_usd,
        eta_minutes=eta_minutes,
        success_rate=success_rate,
        liquidity_usd=liquidity_usd,
        execution_ready=execution_ready,
        execution_method=execution_method,
    )


class StaticAdapter(ProviderAdapter):
    """Adapter that answers from memory"""

    def __init__(self, config: RouterConfig, provider_id: str, quote: Optional[Quote] = None,
                 error: Optional[Exception] = None, delay: float = 0.0):
        super().__init__(config)
        self.provider_id = provider_id
        self._quote = quote
        self._error = error
        self._delay = delay
        self.calls: List[RouteRequest] = []

    async def fetch_quote(self, request: RouteRequest) -> Optional[Quote]:
        self.calls.append(request)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._quote

    def set_quote(self, quote: Optional[Quote]):
        self._quote = quote


class RecordingBroadcaster:
    """Broadcaster that records payloads and can fail on a given action"""

    def __init__(self, fail_on: Optional[str] = None, delay: float = 0.0):
        self.fail_on = fail_on
        self.delay = delay
        self.submissions: List[Tuple[str, Dict]] = []

    async def submit(self, network: str, payload: Dict) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        if payload.get('action') == self.fail_on:
            raise NetworkError("execution reverted", {'action': self.fail_on})
        self.submissions.append((network, payload))
        return f"0x{len(self.submissions):064x}"

    def actions(self) -> List[str]:
        return [p['action'] for _, p in self.submissions]


class FakePriceFeed:
    def __init__(self, prices: Optional[Dict[str, float]] = None):
        self.prices = dict(prices or {})

    async def get_price(self, asset: str) -> Optional[float]:
        return self.prices.get(asset)


@pytest.fixture
def config():
    return RouterConfig(
        provider_timeout_seconds=0.5,
        aggregation_timeout_seconds=1.0,
        confirmation_ttl_seconds=900,
        agent_wallet_address=OTHER_EVM_ADDRESS,
    )


@pytest.fixture
def adapters(config):
    return [
        StaticAdapter(config, "axelar", make_quote("axelar", fee_usd=0.5)),
        StaticAdapter(config, "layerzero", make_quote(
            "layerzero", fee_usd=0.51, eta_minutes=3, liquidity_usd=50_000_000,
            execution_method=ExecutionMethod.LAYERZERO_STARGATE,
        )),
    ]


@pytest.fixture
def aggregator(adapters, config):
    return RouteAggregator(adapters, config)


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def alert_monitor(aggregator):
    return AlertMonitor(InMemoryAlertStore(), aggregator, price_feed=FakePriceFeed({'CELO': 0.7}))


@pytest.fixture
def state_machine(aggregator, broadcaster, config, alert_monitor):
    return TransferStateMachine(
        aggregator=aggregator,
        dispatcher=ExecutionDispatcher(broadcaster, config),
        config=config,
        alert_monitor=alert_monitor,
        price_feed=FakePriceFeed({'CELO': 0.7}),
    )


@pytest.fixture
def notifier():
    return CollectingNotificationSink()


@pytest.fixture
def agent(state_machine, alert_monitor, notifier):
    return TransferAgent(state_machine, sessions=InMemorySessionStore(),
                         alert_monitor=alert_monitor, notifier=notifier)


@pytest.fixture
def failing_provider_error():
    return ProviderUnavailable("axelar returned HTTP 503")
