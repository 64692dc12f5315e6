"""
Bridge Quote Providers

One adapter per quoting source. Every adapter turns a RouteRequest into a
normalized Quote, None when it cannot serve the route, or a failure.

Providers:
- Across (suggested-fees API, EVM only)
- Wormhole (relay fee API, estimate fallback, Solana + EVM)
- Axelar (GMP gas fee API)
- Celer cBridge (estimateAmt API)
- LayerZero / Stargate (published-rate estimate, no HTTP)
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from .config import RouterConfig
from .errors import ProviderUnavailable
from .models import ExecutionMethod, Quote, RouteRequest
from .networks import get_network, to_base_units


@dataclass(frozen=True)
class QuoteOutcome:
    """Result of one provider call: a quote, no route, or a failure"""
    provider_id: str
    quote: Optional[Quote] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class ProviderAdapter:
    """
    Base adapter

    Subclasses implement fetch_quote(); quote() wraps it so that a provider
    never raises into the aggregator.
    """

    provider_id = 'base'
    execution_method: ExecutionMethod = ExecutionMethod.ACROSS_RELAY

    def __init__(self, config: RouterConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self._session = session
        self._owns_session = session is None

    @property
    def execution_ready(self) -> bool:
        return self.config.provider_settings(self.provider_id).execution_ready

    @property
    def enabled(self) -> bool:
        return self.config.provider_settings(self.provider_id).enabled

    async def quote(self, request: RouteRequest) -> QuoteOutcome:
        try:
            quote = await self.fetch_quote(request)
        except asyncio.TimeoutError:
            return QuoteOutcome(self.provider_id, error="timed out")
        except ProviderUnavailable as e:
            return QuoteOutcome(self.provider_id, error=e.message)
        except aiohttp.ClientError as e:
            return QuoteOutcome(self.provider_id, error=f"transport error: {e}")
        except (ValueError, TypeError, KeyError) as e:
            return QuoteOutcome(self.provider_id, error=f"malformed response: {e}")
        except Exception as e:
            logger.warning(f"⚠️ {self.provider_id}: unexpected quote error: {e}")
            return QuoteOutcome(self.provider_id, error=str(e) or type(e).__name__)

        if quote is None:
            logger.debug(f"{self.provider_id}: no route for {request.describe()}")
        return QuoteOutcome(self.provider_id, quote=quote)

    async def fetch_quote(self, request: RouteRequest) -> Optional[Quote]:
        raise NotImplementedError

    def _make_quote(self, fee_usd: float, eta_minutes: float, success_rate: float,
                    liquidity_usd: float, raw_payload: Optional[Dict] = None,
                    note: Optional[str] = None) -> Quote:
        return Quote(
            provider_id=self.provider_id,
            fee_usd=float(fee_usd),
            eta_minutes=float(eta_minutes),
            success_rate=float(success_rate),
            liquidity_usd=float(liquidity_usd),
            execution_ready=self.execution_ready,
            execution_method=self.execution_method,
            raw_payload=raw_payload,
            note=note,
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.provider_timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None,
                        allow_error_status: bool = False) -> Optional[Dict]:
        """
        GET a JSON document

        Returns None for a non-OK status when allow_error_status is set,
        otherwise raises ProviderUnavailable.
        """
        session = self._get_session()
        async with session.get(url, params=params) as response:
            if response.status >= 400:
                if allow_error_status:
                    return None
                raise ProviderUnavailable(
                    f"{self.provider_id} returned HTTP {response.status}",
                    {'url': url}
                )
            data = await response.json(content_type=None)

        if not isinstance(data, dict):
            raise ProviderUnavailable(f"{self.provider_id} returned a non-object body")
        return data

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class AcrossAdapter(ProviderAdapter):
    """Across relayer quotes; EVM networks with an Across deployment only"""

    provider_id = 'across'
    execution_method = ExecutionMethod.ACROSS_RELAY
    ETA_MINUTES = 2
    SUCCESS_RATE = 0.98
    DEFAULT_LIQUIDITY_USD = 999_999

    async def fetch_quote(self, request: RouteRequest) -> Optional[Quote]:
        src = get_network(request.source_network)
        dst = get_network(request.destination_network)
        if not src or not dst or not src.across_id or not dst.across_id:
            return None

        input_token = self.config.token_address(src.name, request.asset)
        output_token = self.config.token_address(dst.name, request.asset)
        if not input_token or not output_token:
            return None

        data = await self._get_json(
            f"{self.config.bridge_endpoints['across']}/suggested-fees",
            params={
                'inputToken': input_token,
                'outputToken': output_token,
                'originChainId': src.across_id,
                'destinationChainId': dst.across_id,
                'amount': str(to_base_units(request.amount, request.asset)),
            }
        )

        # Percentages are 1e18-scaled fractions
        relay_pct = float(data.get('relayFeePct', 0)) / 1e18
        capital_pct = float(data.get('capitalFeePct', 0)) / 1e18
        fee_usd = (relay_pct + capital_pct) * request.amount

        limits = data.get('limits') or {}
        liquidity = limits.get('maxDepositInstant')
        liquidity_usd = float(liquidity) / 1e6 if liquidity else self.DEFAULT_LIQUIDITY_USD

        return self._make_quote(fee_usd, self.ETA_MINUTES, self.SUCCESS_RATE, liquidity_usd, data)


class WormholeAdapter(ProviderAdapter):
    """Wormhole NTT relay fees; falls back to an estimate when no live quote exists"""

    provider_id = 'wormhole'
    execution_method = ExecutionMethod.WORMHOLE_NTT
    ETA_MINUTES = 15
    SUCCESS_RATE = 0.97
    DEFAULT_LIQUIDITY_USD = 10_000_000

    @staticmethod
    def estimate_fee(amount: float) -> float:
        return amount * 0.001 + 0.5

    async def fetch_quote(self, request: RouteRequest) -> Optional[Quote]:
        src = get_network(request.source_network)
        dst = get_network(request.destination_network)
        if not src or not dst or not src.wormhole_id or not dst.wormhole_id:
            return None

        data = await self._get_json(
            f"{self.config.bridge_endpoints['wormhole']}/api/v1/relays/fees",
            params={'fromChain': src.wormhole_id, 'toChain': dst.wormhole_id, 'token': request.asset},
            allow_error_status=True,
        )

        if data is None:
            return self._make_quote(
                self.estimate_fee(request.amount), self.ETA_MINUTES, self.SUCCESS_RATE,
                self.DEFAULT_LIQUIDITY_USD, note="Fee is estimated (live quote unavailable)"
            )

        fee = (data.get('fee') or {}).get('usd')
        fee_usd = float(fee) if fee is not None else self.estimate_fee(request.amount)
        liquidity_usd = float(data.get('liquidity') or self.DEFAULT_LIQUIDITY_USD)
        return self._make_quote(fee_usd, self.ETA_MINUTES, self.SUCCESS_RATE, liquidity_usd, data)


class AxelarAdapter(ProviderAdapter):
    """Axelar GMP gas fee estimates"""

    provider_id = 'axelar'
    execution_method = ExecutionMethod.AXELAR_GMP
    ETA_MINUTES = 5
    SUCCESS_RATE = 0.96
    LIQUIDITY_USD = 5_000_000

    async def fetch_quote(self, request: RouteRequest) -> Optional[Quote]:
        src = get_network(request.source_network)
        dst = get_network(request.destination_network)
        if not src or not dst or not src.axelar_name or not dst.axelar_name:
            return None

        data = await self._get_json(
            f"{self.config.bridge_endpoints['axelar']}/v1/gmp/gasfee",
            params={
                'sourceChain': src.axelar_name,
                'destinationChain': dst.axelar_name,
                'symbol': request.asset,
                'amount': request.amount,
            }
        )

        total = (data.get('fee') or {}).get('total')
        fee_usd = float(total) if total is not None else request.amount * 0.002
        return self._make_quote(fee_usd, self.ETA_MINUTES, self.SUCCESS_RATE, self.LIQUIDITY_USD, data)


class CelerAdapter(ProviderAdapter):
    """Celer cBridge estimates, priced for the agent wallet"""

    provider_id = 'celer'
    execution_method = ExecutionMethod.CELER_CBRIDGE
    ETA_MINUTES = 5
    SUCCESS_RATE = 0.95
    DEFAULT_LIQUIDITY = 1_000_000
    SLIPPAGE_TOLERANCE = 3000

    async def fetch_quote(self, request: RouteRequest) -> Optional[Quote]:
        src = get_network(request.source_network)
        dst = get_network(request.destination_network)
        if not src or not dst or not src.evm_chain_id or not dst.evm_chain_id:
            return None
        if not self.config.token_address(src.name, request.asset):
            return None

        data = await self._get_json(
            f"{self.config.bridge_endpoints['celer']}/v2/estimateAmt",
            params={
                'src_chain_id': src.evm_chain_id,
                'dst_chain_id': dst.evm_chain_id,
                'token_symbol': request.asset,
                'amt': str(to_base_units(request.amount, request.asset)),
                'usr_addr': self.config.agent_wallet_address or '',
                'slippage_tolerance': self.SLIPPAGE_TOLERANCE,
            }
        )

        if data.get('err'):
            logger.debug(f"celer: route rejected: {data['err']}")
            return None

        fee = data.get('fee')
        fee_usd = float(fee) if fee is not None else request.amount * 0.003
        liquidity_usd = float(data.get('liq_amt') or self.DEFAULT_LIQUIDITY) / 1e6
        return self._make_quote(fee_usd, self.ETA_MINUTES, self.SUCCESS_RATE, liquidity_usd, data)


class LayerZeroAdapter(ProviderAdapter):
    """Stargate transfers over LayerZero, priced from published rates"""

    provider_id = 'layerzero'
    execution_method = ExecutionMethod.LAYERZERO_STARGATE
    ETA_MINUTES = 3
    SUCCESS_RATE = 0.97
    LIQUIDITY_USD = 50_000_000
    POOL_IDS = {'USDC': 1, 'USDT': 2}

    async def fetch_quote(self, request: RouteRequest) -> Optional[Quote]:
        src = get_network(request.source_network)
        dst = get_network(request.destination_network)
        if not src or not dst or not src.layerzero_id or not dst.layerzero_id:
            return None
        if request.asset not in self.POOL_IDS:
            return None

        fee_usd = request.amount * 0.0006 + 0.45
        return self._make_quote(
            fee_usd, self.ETA_MINUTES, self.SUCCESS_RATE, self.LIQUIDITY_USD,
            raw_payload={
                'src_chain_id': src.layerzero_id,
                'dst_chain_id': dst.layerzero_id,
                'pool_id': self.POOL_IDS[request.asset],
            },
            note="Fee is estimated from published Stargate rates",
        )


PROVIDER_CLASSES = [AcrossAdapter, WormholeAdapter, AxelarAdapter, CelerAdapter, LayerZeroAdapter]


def build_default_adapters(config: RouterConfig,
                           session: Optional[aiohttp.ClientSession] = None) -> List[ProviderAdapter]:
    """Instantiate every enabled provider"""
    adapters = []
    for cls in PROVIDER_CLASSES:
        adapter = cls(config, session=session)
        if adapter.enabled:
            adapters.append(adapter)
        else:
            logger.info(f"Provider {adapter.provider_id} disabled by config")
    return adapters
