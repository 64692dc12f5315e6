"""
tests/unit/test_route_ranker.py - Route ranking policies.
"""

import pytest

from crosschain_transfer.models import OptimizationPolicy
from crosschain_transfer.route_ranker import BALANCED_WEIGHTS, balanced_score, rank
from tests.conftest import make_quote


@pytest.fixture
def quotes():
    return [
        make_quote("wormhole", fee_usd=0.60, eta_minutes=15, success_rate=0.97),
        make_quote("axelar", fee_usd=0.70, eta_minutes=5, success_rate=0.96),
        make_quote("celer", fee_usd=0.30, eta_minutes=5, success_rate=0.95),
        make_quote("layerzero", fee_usd=0.51, eta_minutes=3, success_rate=0.99),
    ]


class TestPolicies:
    """Each policy orders by its own key."""

    def test_cheapest_orders_by_fee(self, quotes):
        ranked = rank(quotes, OptimizationPolicy.CHEAPEST)
        assert [q.provider_id for q in ranked] == ["celer", "layerzero", "wormhole", "axelar"]

    def test_fastest_orders_by_eta(self, quotes):
        ranked = rank(quotes, OptimizationPolicy.FASTEST)
        assert ranked[0].provider_id == "layerzero"
        assert ranked[-1].provider_id == "wormhole"

    def test_safest_orders_by_success_rate_descending(self, quotes):
        ranked = rank(quotes, OptimizationPolicy.SAFEST)
        assert [q.success_rate for q in ranked] == sorted((q.success_rate for q in quotes), reverse=True)

    def test_balanced_uses_weighted_score(self, quotes):
        ranked = rank(quotes, OptimizationPolicy.BALANCED)
        scores = [balanced_score(q) for q in ranked]
        assert scores == sorted(scores)

    def test_balanced_score_formula(self):
        quote = make_quote("x", fee_usd=2.0, eta_minutes=10, success_rate=0.9)
        expected = 0.4 * 2.0 + 0.4 * 10 + 0.2 * (1 - 0.9) * 100
        assert balanced_score(quote) == pytest.approx(expected)
        assert BALANCED_WEIGHTS == {'fee': 0.4, 'eta': 0.4, 'risk': 0.2}

    def test_policy_accepts_string_value(self, quotes):
        assert rank(quotes, "fastest") == rank(quotes, OptimizationPolicy.FASTEST)


class TestOrdering:
    """Total order, no filtering."""

    def test_ties_break_by_provider_id(self):
        tied = [
            make_quote("wormhole", fee_usd=1.0),
            make_quote("axelar", fee_usd=1.0),
            make_quote("celer", fee_usd=1.0),
        ]
        assert [q.provider_id for q in rank(tied)] == ["axelar", "celer", "wormhole"]

    def test_never_filters(self, quotes):
        not_ready = make_quote("across", fee_usd=0.01, execution_ready=False)
        ranked = rank(quotes + [not_ready])
        assert len(ranked) == len(quotes) + 1
        assert ranked[0] is not_ready

    def test_lowering_fee_never_worsens_position(self, quotes):
        before = [q.provider_id for q in rank(quotes)].index("wormhole")
        cheaper = [make_quote("wormhole", fee_usd=0.10, eta_minutes=15, success_rate=0.97)
                   if q.provider_id == "wormhole" else q for q in quotes]
        after = [q.provider_id for q in rank(cheaper)].index("wormhole")
        assert after <= before

    def test_does_not_mutate_input(self, quotes):
        original = list(quotes)
        rank(quotes, OptimizationPolicy.FASTEST)
        assert quotes == original

    def test_empty(self):
        assert rank([], OptimizationPolicy.BALANCED) == []
