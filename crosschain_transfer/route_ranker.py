"""
Route Ranker

Orders quotes under an optimization policy:
- cheapest: lowest fee first
- fastest: lowest ETA first
- safest: highest success rate first
- balanced: lowest weighted score first

Ties are broken by provider id so the order is total and reproducible.
Never filters.
"""

from typing import Callable, Dict, Iterable, List, Tuple

from .models import OptimizationPolicy, Quote


# Balanced score = fee·W_fee + eta·W_eta + (1 - success_rate)·100·W_risk
BALANCED_WEIGHTS = {
    'fee': 0.4,
    'eta': 0.4,
    'risk': 0.2,
}


def balanced_score(quote: Quote) -> float:
    return (BALANCED_WEIGHTS['fee'] * quote.fee_usd
            + BALANCED_WEIGHTS['eta'] * quote.eta_minutes
            + BALANCED_WEIGHTS['risk'] * (1 - quote.success_rate) * 100)


_SORT_KEYS: Dict[OptimizationPolicy, Callable[[Quote], Tuple]] = {
    OptimizationPolicy.CHEAPEST: lambda q: (q.fee_usd, q.provider_id),
    OptimizationPolicy.FASTEST: lambda q: (q.eta_minutes, q.provider_id),
    OptimizationPolicy.SAFEST: lambda q: (-q.success_rate, q.provider_id),
    OptimizationPolicy.BALANCED: lambda q: (balanced_score(q), q.provider_id),
}


def rank(quotes: Iterable[Quote], policy: OptimizationPolicy = OptimizationPolicy.CHEAPEST) -> List[Quote]:
    """
    Sort quotes by policy

    Args:
        quotes: Quotes to order
        policy: Optimization policy (enum or its string value)

    Returns:
        New list, best first
    """
    return sorted(quotes, key=_SORT_KEYS[OptimizationPolicy(policy)])
