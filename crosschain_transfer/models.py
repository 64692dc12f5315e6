"""
Core Data Model

Value objects shared by the aggregator, ranker, validator, state machine,
dispatcher and alert monitor.
"""

import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OptimizationPolicy(str, Enum):
    CHEAPEST = "cheapest"
    FASTEST = "fastest"
    SAFEST = "safest"
    BALANCED = "balanced"


class ExecutionMethod(str, Enum):
    """Closed set of provider-specific execution procedures"""
    ACROSS_RELAY = "across_relay"
    WORMHOLE_NTT = "wormhole_ntt"
    AXELAR_GMP = "axelar_gmp"
    CELER_CBRIDGE = "celer_cbridge"
    LAYERZERO_STARGATE = "layerzero_stargate"


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    EXECUTING = "executing"
    ERROR = "error"


class WarningKind(str, Enum):
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    NO_ROUTE = "no_route"
    NOT_EXECUTABLE = "not_executable"
    LOW_LIQUIDITY = "low_liquidity"
    HIGH_FEE = "high_fee"


@dataclass(frozen=True)
class RouteRequest:
    """Immutable request for routes between two networks"""
    source_network: str
    destination_network: str
    asset: str
    amount: float
    policy: OptimizationPolicy = OptimizationPolicy.CHEAPEST

    def __post_init__(self):
        if self.amount is None or self.amount <= 0:
            raise ValueError(f"Route amount must be positive, got {self.amount}")
        if not isinstance(self.policy, OptimizationPolicy):
            object.__setattr__(self, 'policy', OptimizationPolicy(self.policy))

    def describe(self) -> str:
        return f"{self.amount:g} {self.asset} {self.source_network} → {self.destination_network}"


@dataclass(frozen=True)
class TransferRequest:
    """A route request plus the addresses the guardrails need"""
    route: RouteRequest
    destination_address: str
    source_address: Optional[str] = None
    context_hint: str = ""


@dataclass(frozen=True)
class Quote:
    """One provider's priced, timed estimate for a route"""
    provider_id: str
    fee_usd: float
    eta_minutes: float
    success_rate: float
    liquidity_usd: float
    execution_ready: bool
    execution_method: ExecutionMethod
    raw_payload: Optional[Dict[str, Any]] = field(default=None, compare=False, repr=False)
    note: Optional[str] = None

    def __post_init__(self):
        for name in ('fee_usd', 'eta_minutes', 'success_rate', 'liquidity_usd'):
            value = getattr(self, name)
            if value is not None and not math.isfinite(value):
                raise ValueError(f"{self.provider_id}: {name} must be finite, got {value}")
        if self.fee_usd is None or self.fee_usd < 0:
            raise ValueError(f"{self.provider_id}: fee must be non-negative, got {self.fee_usd}")
        if self.eta_minutes is None or self.eta_minutes < 0:
            raise ValueError(f"{self.provider_id}: eta must be non-negative, got {self.eta_minutes}")
        if self.success_rate is None or not 0.0 <= self.success_rate <= 1.0:
            raise ValueError(f"{self.provider_id}: success rate must be within [0, 1], got {self.success_rate}")
        if self.liquidity_usd is None or self.liquidity_usd < 0:
            raise ValueError(f"{self.provider_id}: liquidity must be non-negative, got {self.liquidity_usd}")
        if not isinstance(self.execution_method, ExecutionMethod):
            object.__setattr__(self, 'execution_method', ExecutionMethod(self.execution_method))

    def to_dict(self) -> Dict:
        return {
            'provider_id': self.provider_id,
            'fee_usd': self.fee_usd,
            'eta_minutes': self.eta_minutes,
            'success_rate': self.success_rate,
            'liquidity_usd': self.liquidity_usd,
            'execution_ready': self.execution_ready,
            'execution_method': self.execution_method.value,
            'note': self.note,
        }

    def __repr__(self):
        return (f"Quote({self.provider_id}: ${self.fee_usd:.2f} in {self.eta_minutes:g}min, "
                f"{self.success_rate:.0%})")


@dataclass(frozen=True)
class RouteWarning:
    kind: WarningKind
    message: str
    provider_id: Optional[str] = None

    def __str__(self):
        return self.message


@dataclass
class RankedRouteSet:
    """Quotes sorted by the active policy; best is all[0] or None"""
    policy: OptimizationPolicy
    all: List[Quote] = field(default_factory=list)
    warnings: List[RouteWarning] = field(default_factory=list)

    @property
    def best(self) -> Optional[Quote]:
        return self.all[0] if self.all else None

    @property
    def alternatives(self) -> List[Quote]:
        return self.all[1:]

    def warning_messages(self) -> List[str]:
        return [w.message for w in self.warnings]

    def has_warning(self, kind: WarningKind) -> bool:
        return any(w.kind == kind for w in self.warnings)

    def to_dict(self) -> Dict:
        return {
            'policy': self.policy.value,
            'best': self.best.to_dict() if self.best else None,
            'all': [q.to_dict() for q in self.all],
            'warnings': [{'kind': w.kind.value, 'message': w.message} for w in self.warnings],
        }


@dataclass(frozen=True)
class ValidationVerdict:
    """Guardrail outcome; valid if and only if there are no errors"""
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    suggestions: Tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors

    def summary(self) -> str:
        if not self.errors and not self.warnings:
            return "✅ All checks passed. Ready to execute."
        lines = []
        if self.errors:
            lines.append(f"❌ {len(self.errors)} issue(s) must be resolved:")
            lines.extend(f"  • {e}" for e in self.errors)
        if self.warnings:
            lines.append(f"⚠️ {len(self.warnings)} warning(s):")
            lines.extend(f"  • {w}" for w in self.warnings)
        if self.suggestions:
            lines.append("💡 Suggestions:")
            lines.extend(f"  • {s}" for s in self.suggestions)
        return "\n".join(lines)

    def to_dict(self) -> Dict:
        return {
            'valid': self.valid,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'suggestions': list(self.suggestions),
        }


@dataclass(frozen=True)
class SwapQuote:
    """Same-network swap the dispatcher performs before bridging"""
    provider_id: str
    network: str
    from_asset: str
    to_asset: str
    amount_in: float
    price_impact: float
    raw_payload: Optional[Dict[str, Any]] = field(default=None, compare=False, repr=False)

    @property
    def amount_out(self) -> float:
        return self.amount_in * (1 - self.price_impact)


@dataclass(eq=False)
class PendingTransfer:
    """Snapshot held by a session between preview and dispatch"""
    transfer_id: str
    request: TransferRequest
    quote: Quote
    verdict: ValidationVerdict
    route_set: RankedRouteSet
    swap: Optional[SwapQuote] = None
    created_at: datetime = field(default_factory=utc_now)
    dispatched: bool = False


@dataclass
class Turn:
    role: str  # 'user', 'assistant', 'system'
    content: str
    at: datetime = field(default_factory=utc_now)


@dataclass
class TransferSession:
    """Per-conversation state, mutated only by the state machine"""
    session_id: str
    state: SessionState = SessionState.IDLE
    pending_transfer: Optional[PendingTransfer] = None
    history: List[Turn] = field(default_factory=list)
    wallet_address: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def record(self, role: str, content: str):
        self.history.append(Turn(role=role, content=content))

    def recent_text(self, turns: int = 3) -> str:
        return " ".join(t.content for t in self.history[-turns:])


@dataclass
class Receipt:
    """Successful dispatch of a confirmed transfer"""
    transfer_id: str
    provider_id: str
    execution_method: ExecutionMethod
    source_network: str
    destination_network: str
    destination_address: str
    asset: str
    amount: float
    fee_usd: float
    eta_minutes: float
    transfer_tx: str
    authorization_tx: Optional[str] = None
    swap_tx: Optional[str] = None
    explorer_link: Optional[str] = None
    submitted_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['execution_method'] = self.execution_method.value
        data['submitted_at'] = self.submitted_at.isoformat()
        return data


@dataclass
class HandleResult:
    """Reply given to every channel adapter"""
    message: str
    state: SessionState
    data: Optional[Dict[str, Any]] = None
