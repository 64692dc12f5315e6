"""
Route Aggregator

Fans a RouteRequest out to every registered provider concurrently and folds
the answers into one set of comparable quotes.

Features:
- Per-provider timeout plus a ceiling for the whole batch
- Provider failures become warnings, never exceptions
- Execution-ready filtering with a distinct warning when nothing is ready
- Low-liquidity and high-fee warnings
- find_routes(): aggregate + rank in one call
"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger

from .config import RouterConfig
from .models import Quote, RankedRouteSet, RouteRequest, RouteWarning, WarningKind
from .providers import ProviderAdapter, QuoteOutcome
from .route_ranker import rank


@dataclass
class AggregationResult:
    """Surviving quotes plus everything worth telling the user about"""
    quotes: List[Quote] = field(default_factory=list)
    warnings: List[RouteWarning] = field(default_factory=list)


class RouteAggregator:
    """
    Concurrent quote collection across provider adapters

    Example:
        aggregator = RouteAggregator(adapters, config)
        routes = await aggregator.find_routes(RouteRequest('celo', 'base', 'USDC', 100))
        print(routes.best)
    """

    LOW_LIQUIDITY_MULTIPLIER = 2.0
    HIGH_FEE_FRACTION = 0.05

    def __init__(self, adapters: List[ProviderAdapter], config: Optional[RouterConfig] = None):
        self.adapters = list(adapters)
        self.config = config or RouterConfig()
        logger.info(f"Route aggregator initialized with {len(self.adapters)} providers: "
                    f"{', '.join(a.provider_id for a in self.adapters)}")

    async def _call(self, adapter: ProviderAdapter, request: RouteRequest) -> QuoteOutcome:
        try:
            return await asyncio.wait_for(adapter.quote(request), timeout=self.config.provider_timeout_seconds)
        except asyncio.TimeoutError:
            return QuoteOutcome(adapter.provider_id,
                                error=f"timed out after {self.config.provider_timeout_seconds:g}s")

    async def aggregate(self, request: RouteRequest) -> AggregationResult:
        """
        Query every provider for a route

        Args:
            request: Route to price

        Returns:
            AggregationResult (possibly empty, never raises for provider failures)
        """
        result = AggregationResult()
        if not self.adapters:
            result.warnings.append(RouteWarning(WarningKind.NO_ROUTE, "No route providers are configured"))
            return result

        logger.info(f"🔍 Querying {len(self.adapters)} providers for {request.describe()}")

        tasks = {
            asyncio.ensure_future(self._call(adapter, request)): adapter.provider_id
            for adapter in self.adapters
        }
        done, pending = await asyncio.wait(tasks.keys(), timeout=self.config.aggregation_timeout_seconds)

        for task in pending:
            task.cancel()
            provider_id = tasks[task]
            logger.warning(f"⚠️ {provider_id}: cancelled at aggregation ceiling")
            result.warnings.append(RouteWarning(
                WarningKind.PROVIDER_UNAVAILABLE,
                f"{provider_id} did not respond in time",
                provider_id
            ))
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        quotes: List[Quote] = []
        for task in done:
            provider_id = tasks[task]
            if task.exception() is not None:
                outcome = QuoteOutcome(provider_id, error=str(task.exception()))
            else:
                outcome = task.result()

            if outcome.failed:
                logger.warning(f"⚠️ {provider_id}: quote unavailable ({outcome.error})")
                result.warnings.append(RouteWarning(
                    WarningKind.PROVIDER_UNAVAILABLE,
                    f"{provider_id} unavailable: {outcome.error}",
                    provider_id
                ))
            elif outcome.quote is not None:
                logger.debug(f"✓ {provider_id}: ${outcome.quote.fee_usd:.2f}, "
                             f"{outcome.quote.eta_minutes:g}min, ready={outcome.quote.execution_ready}")
                quotes.append(outcome.quote)

        # Keep warning order stable regardless of completion order
        result.warnings.sort(key=lambda w: w.provider_id or '')

        if not quotes:
            result.warnings.append(RouteWarning(
                WarningKind.NO_ROUTE,
                f"No route found for {request.describe()}"
            ))
            logger.warning(f"✗ No quotes for {request.describe()}")
            return result

        ready = [q for q in quotes if q.execution_ready]
        if ready:
            quotes = ready
        else:
            result.warnings.append(RouteWarning(
                WarningKind.NOT_EXECUTABLE,
                f"{len(quotes)} quote(s) found but none can be executed automatically yet"
            ))

        for quote in quotes:
            if quote.liquidity_usd < self.LOW_LIQUIDITY_MULTIPLIER * request.amount:
                result.warnings.append(RouteWarning(
                    WarningKind.LOW_LIQUIDITY,
                    f"{quote.provider_id}: low liquidity (${quote.liquidity_usd:,.0f}) for this amount",
                    quote.provider_id
                ))
            if quote.fee_usd > self.HIGH_FEE_FRACTION * request.amount:
                result.warnings.append(RouteWarning(
                    WarningKind.HIGH_FEE,
                    f"{quote.provider_id}: fee ${quote.fee_usd:.2f} is more than "
                    f"{self.HIGH_FEE_FRACTION:.0%} of the transfer",
                    quote.provider_id
                ))

        result.quotes = quotes
        logger.info(f"✓ {len(quotes)} quote(s) collected, {len(result.warnings)} warning(s)")
        return result

    async def find_routes(self, request: RouteRequest) -> RankedRouteSet:
        """Aggregate then rank under the request's policy"""
        result = await self.aggregate(request)
        return RankedRouteSet(
            policy=request.policy,
            all=rank(result.quotes, request.policy),
            warnings=result.warnings,
        )

    async def close(self):
        for adapter in self.adapters:
            await adapter.close()
