"""
Conditional Alert Monitor

Standing alerts that are re-evaluated on a fixed cadence.

Conditions:
- fee_below: best route fee for a reference transfer drops below threshold
- price_below / price_above: asset USD price crosses threshold
- gas_below: transfer gas cost on a network drops below threshold

Each alert fires at most once. tick() marks satisfied alerts as triggered
before emitting them, returns the TriggerEvents and hands each one to the
injected handler.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from loguru import logger

from .intent_parser import TransferIntent
from .models import OptimizationPolicy, RouteRequest, utc_now


class AlertConditionKind(str, Enum):
    FEE_BELOW = "fee_below"
    PRICE_BELOW = "price_below"
    PRICE_ABOVE = "price_above"
    GAS_BELOW = "gas_below"


class AlertAction(str, Enum):
    NOTIFY = "notify"
    AUTO_EXECUTE = "auto_execute"


@dataclass(frozen=True)
class AlertCondition:
    """What to watch and the threshold that fires it"""
    kind: AlertConditionKind
    threshold: float
    asset: str = 'USDC'
    source_network: str = 'celo'
    destination_network: Optional[str] = None
    reference_amount: float = 100.0

    def __post_init__(self):
        if not isinstance(self.kind, AlertConditionKind):
            object.__setattr__(self, 'kind', AlertConditionKind(self.kind))
        if self.kind in (AlertConditionKind.FEE_BELOW, AlertConditionKind.GAS_BELOW) and not self.destination_network:
            raise ValueError(f"{self.kind.value} alerts need a network")

    def is_met(self, value: float) -> bool:
        if self.kind == AlertConditionKind.PRICE_ABOVE:
            return value > self.threshold
        return value < self.threshold

    def describe(self) -> str:
        if self.kind == AlertConditionKind.FEE_BELOW:
            return (f"{self.asset} fees {self.source_network} → {self.destination_network} "
                    f"below ${self.threshold:g}")
        if self.kind == AlertConditionKind.GAS_BELOW:
            return f"gas on {self.destination_network} below ${self.threshold:g}"
        direction = "above" if self.kind == AlertConditionKind.PRICE_ABOVE else "below"
        return f"{self.asset} price {direction} ${self.threshold:g}"


@dataclass
class StandingAlert:
    alert_id: str
    session_id: str
    condition: AlertCondition
    action: AlertAction = AlertAction.NOTIFY
    transfer: Optional[TransferIntent] = None
    triggered: bool = False
    created_at: datetime = field(default_factory=utc_now)
    triggered_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        return {
            'alert_id': self.alert_id,
            'session_id': self.session_id,
            'condition': self.condition.kind.value,
            'threshold': self.condition.threshold,
            'description': self.condition.describe(),
            'action': self.action.value,
            'triggered': self.triggered,
            'created_at': self.created_at.isoformat(),
            'triggered_at': self.triggered_at.isoformat() if self.triggered_at else None,
        }


@dataclass
class TriggerEvent:
    """An alert whose condition was observed to be satisfied"""
    alert_id: str
    session_id: str
    condition: AlertCondition
    action: AlertAction
    current_value: float
    transfer: Optional[TransferIntent] = None
    triggered_at: datetime = field(default_factory=utc_now)

    def describe(self) -> str:
        return f"🔔 Alert {self.alert_id}: {self.condition.describe()} (now ${self.current_value:.4g})"

    def to_dict(self) -> Dict:
        return {
            'alert_id': self.alert_id,
            'session_id': self.session_id,
            'condition': self.condition.kind.value,
            'threshold': self.condition.threshold,
            'current_value': self.current_value,
            'action': self.action.value,
            'triggered_at': self.triggered_at.isoformat(),
        }


class AlertStore(Protocol):
    def add(self, alert: StandingAlert): ...

    def get(self, alert_id: str) -> Optional[StandingAlert]: ...

    def remove(self, alert_id: str) -> bool: ...

    def list(self, session_id: Optional[str] = None) -> List[StandingAlert]: ...


class InMemoryAlertStore:
    """Process-local alert storage"""

    def __init__(self):
        self._alerts: Dict[str, StandingAlert] = {}

    def add(self, alert: StandingAlert):
        self._alerts[alert.alert_id] = alert

    def get(self, alert_id: str) -> Optional[StandingAlert]:
        return self._alerts.get(alert_id)

    def remove(self, alert_id: str) -> bool:
        return self._alerts.pop(alert_id, None) is not None

    def list(self, session_id: Optional[str] = None) -> List[StandingAlert]:
        alerts = sorted(self._alerts.values(), key=lambda a: a.created_at)
        if session_id is None:
            return alerts
        return [a for a in alerts if a.session_id == session_id]


TriggerHandler = Callable[[TriggerEvent], Awaitable[None]]


class AlertMonitor:
    """
    Fixed-interval evaluator for standing alerts

    Example:
        monitor = AlertMonitor(InMemoryAlertStore(), aggregator, price_feed, gas_oracle,
                               handler=agent.handle_trigger)
        monitor.start()
    """

    def __init__(self, store: AlertStore, aggregator=None, price_feed=None, gas_oracle=None,
                 handler: Optional[TriggerHandler] = None, interval_seconds: float = 60.0):
        self.store = store
        self.aggregator = aggregator
        self.price_feed = price_feed
        self.gas_oracle = gas_oracle
        self.handler = handler
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self._tick_lock = asyncio.Lock()

    def register(self, session_id: str, condition: AlertCondition,
                 action: AlertAction = AlertAction.NOTIFY,
                 transfer: Optional[TransferIntent] = None) -> str:
        """
        Add a standing alert

        Returns:
            alert_id

        Raises:
            ValueError: auto_execute without a transfer to execute
        """
        action = AlertAction(action)
        if action == AlertAction.AUTO_EXECUTE and transfer is None:
            raise ValueError("auto_execute alerts need a transfer")

        alert_id = f"alert_{uuid.uuid4().hex[:12]}"
        self.store.add(StandingAlert(
            alert_id=alert_id,
            session_id=session_id,
            condition=condition,
            action=action,
            transfer=transfer,
        ))
        logger.info(f"🔔 Registered {alert_id} for {session_id}: {condition.describe()} ({action.value})")
        return alert_id

    def cancel(self, alert_id: str) -> bool:
        removed = self.store.remove(alert_id)
        if removed:
            logger.info(f"Cancelled {alert_id}")
        return removed

    def list(self, session_id: Optional[str] = None) -> List[StandingAlert]:
        return self.store.list(session_id)

    async def observe(self, condition: AlertCondition) -> Optional[float]:
        """Current value of the quantity a condition watches, or None if unknown"""
        if condition.kind == AlertConditionKind.FEE_BELOW:
            if self.aggregator is None:
                return None
            routes = await self.aggregator.find_routes(RouteRequest(
                condition.source_network, condition.destination_network, condition.asset,
                condition.reference_amount, OptimizationPolicy.CHEAPEST
            ))
            return routes.best.fee_usd if routes.best else None

        if condition.kind in (AlertConditionKind.PRICE_BELOW, AlertConditionKind.PRICE_ABOVE):
            if self.price_feed is None:
                return None
            return await self.price_feed.get_price(condition.asset)

        if condition.kind == AlertConditionKind.GAS_BELOW:
            if self.gas_oracle is None:
                return None
            gas = await self.gas_oracle.get_gas(condition.destination_network)
            return gas.transfer_cost_usd if gas else None

        return None

    async def tick(self) -> List[TriggerEvent]:
        """
        Evaluate every pending alert once

        A failing observation skips that alert for this tick only.

        Returns:
            TriggerEvents for alerts that fired during this tick
        """
        async with self._tick_lock:
            events: List[TriggerEvent] = []
            for alert in self.store.list():
                if alert.triggered:
                    continue
                try:
                    value = await self.observe(alert.condition)
                except Exception as e:
                    logger.warning(f"⚠️ {alert.alert_id}: evaluation failed: {e}")
                    continue

                if value is None or not alert.condition.is_met(value):
                    continue

                alert.triggered = True
                alert.triggered_at = utc_now()
                self.store.add(alert)
                event = TriggerEvent(
                    alert_id=alert.alert_id,
                    session_id=alert.session_id,
                    condition=alert.condition,
                    action=alert.action,
                    current_value=value,
                    transfer=alert.transfer,
                    triggered_at=alert.triggered_at,
                )
                logger.info(event.describe())
                events.append(event)

        if self.handler is not None:
            for event in events:
                try:
                    await self.handler(event)
                except Exception as e:
                    logger.error(f"✗ Trigger handler failed for {event.alert_id}: {e}")

        return events

    async def _run(self):
        logger.info(f"Alert monitor started (every {self.interval_seconds:g}s)")
        while not self._stopping.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"✗ Alert tick failed: {e}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Alert monitor stopped")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.ensure_future(self._run())
        return self._task

    async def stop(self):
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
