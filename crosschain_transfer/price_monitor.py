"""
Market Data

Observations the alert monitor evaluates conditions against:
- PriceFeed: token USD prices from a ccxt exchange (stablecoins pinned to $1)
- GasOracle: cost of a standard token transfer per network, via eth_gasPrice
- bridge_fee_snapshot: min / max / average fee across current route quotes
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import aiohttp
import ccxt.async_support as ccxt
from loguru import logger

from .config import RouterConfig
from .errors import ProviderUnavailable
from .models import OptimizationPolicy, RouteRequest
from .networks import STABLE_ASSETS, get_network


class PriceFeed:
    """
    USD prices via ccxt tickers

    Prices are quoted against USDT ("CELO/USDT") and cached briefly so that
    several alerts on the same asset share one ticker call per tick.
    """

    QUOTE_CURRENCY = 'USDT'
    SYMBOL_ALIASES = {
        'MATIC': 'POL',
        'USDm': 'USDT',
    }

    def __init__(self, exchange_id: str = 'binance', cache_seconds: float = 30.0,
                 exchange: Optional[ccxt.Exchange] = None):
        """
        Args:
            exchange_id: ccxt exchange id used for tickers
            cache_seconds: How long a fetched price is reused
            exchange: Pre-built ccxt exchange (tests inject a fake)
        """
        self.exchange_id = exchange_id
        self.cache_seconds = cache_seconds
        self._exchange = exchange
        self._owns_exchange = exchange is None
        self._cache: Dict[str, Tuple[float, float]] = {}

    def _get_exchange(self) -> ccxt.Exchange:
        if self._exchange is None:
            exchange_class = getattr(ccxt, self.exchange_id)
            self._exchange = exchange_class({
                'enableRateLimit': True,
                'timeout': 30000,
            })
        return self._exchange

    async def get_price(self, asset: str) -> Optional[float]:
        """
        Current USD price of an asset

        Returns:
            Price, or None if the exchange has no market for it
        """
        if asset in STABLE_ASSETS:
            return 1.0

        base = self.SYMBOL_ALIASES.get(asset, asset.upper())
        cached = self._cache.get(base)
        if cached and time.monotonic() - cached[1] < self.cache_seconds:
            return cached[0]

        symbol = f"{base}/{self.QUOTE_CURRENCY}"
        try:
            ticker = await self._get_exchange().fetch_ticker(symbol)
        except ccxt.BadSymbol:
            logger.debug(f"{self.exchange_id}: no market for {symbol}")
            return None
        except ccxt.BaseError as e:
            raise ProviderUnavailable(f"Price lookup failed for {symbol}: {e}", {'exchange': self.exchange_id})

        price = ticker.get('last') or ticker.get('close')
        if price is None:
            return None

        price = float(price)
        self._cache[base] = (price, time.monotonic())
        logger.debug(f"💰 {symbol}: ${price:.4f}")
        return price

    async def close(self):
        if self._owns_exchange and self._exchange is not None:
            await self._exchange.close()
            self._exchange = None


@dataclass
class GasQuote:
    network: str
    gas_price_gwei: float
    transfer_cost_usd: float


class GasOracle:
    """Gas cost of a token transfer, priced in USD"""

    TRANSFER_GAS = 65_000

    def __init__(self, config: RouterConfig, price_feed: PriceFeed,
                 session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.price_feed = price_feed
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.provider_timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def _gas_price_wei(self, rpc_url: str) -> int:
        payload = {'jsonrpc': '2.0', 'id': 1, 'method': 'eth_gasPrice', 'params': []}
        try:
            async with self._get_session().post(rpc_url, json=payload) as response:
                if response.status >= 400:
                    raise ProviderUnavailable(f"RPC returned HTTP {response.status}", {'url': rpc_url})
                data = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise ProviderUnavailable(f"RPC unreachable: {e}", {'url': rpc_url})

        if not isinstance(data, dict) or 'result' not in data:
            raise ProviderUnavailable(f"RPC error: {data.get('error') if isinstance(data, dict) else data}")
        return int(data['result'], 16)

    async def get_gas(self, network: str) -> Optional[GasQuote]:
        """
        Gas price and transfer cost on one network

        Returns:
            GasQuote, or None if the network has no RPC or no native price
        """
        info = get_network(network)
        rpc_url = self.config.rpc_urls.get(network)
        if info is None or info.family != 'evm' or not rpc_url:
            return None

        wei = await self._gas_price_wei(rpc_url)
        native_price = await self.price_feed.get_price(info.native_asset)
        if native_price is None:
            return None

        cost_native = wei * self.TRANSFER_GAS / 1e18
        quote = GasQuote(
            network=network,
            gas_price_gwei=wei / 1e9,
            transfer_cost_usd=cost_native * native_price,
        )
        logger.debug(f"⛽ {network}: {quote.gas_price_gwei:.2f} gwei, ${quote.transfer_cost_usd:.4f} per transfer")
        return quote

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


@dataclass
class FeeSnapshot:
    min_fee_usd: Optional[float] = None
    max_fee_usd: Optional[float] = None
    average_fee_usd: Optional[float] = None
    providers: List[Dict] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'min_fee_usd': self.min_fee_usd,
            'max_fee_usd': self.max_fee_usd,
            'average_fee_usd': self.average_fee_usd,
            'providers': list(self.providers),
        }


async def bridge_fee_snapshot(aggregator, source_network: str, destination_network: str,
                              asset: str = 'USDC', amount: float = 100.0) -> FeeSnapshot:
    """
    Fee spread across all current quotes for a reference transfer

    Args:
        aggregator: RouteAggregator
        source_network: Source network
        destination_network: Destination network
        asset: Asset symbol
        amount: Reference amount

    Returns:
        FeeSnapshot (all None when nothing quoted)
    """
    request = RouteRequest(source_network, destination_network, asset, amount, OptimizationPolicy.CHEAPEST)
    routes = await aggregator.find_routes(request)
    if not routes.all:
        return FeeSnapshot()

    fees = [q.fee_usd for q in routes.all]
    return FeeSnapshot(
        min_fee_usd=min(fees),
        max_fee_usd=max(fees),
        average_fee_usd=sum(fees) / len(fees),
        providers=[{'provider': q.provider_id, 'fee_usd': q.fee_usd, 'eta_minutes': q.eta_minutes}
                   for q in routes.all],
    )
