"""
Transfer Agent

Public entry point that channel adapters (chat bots, web endpoints) talk to.

Features:
- handle(): one message or pre-parsed intent for one session
- Per-session serialization: one advance() at a time per session id,
  distinct sessions run in parallel
- Standing alerts: register / cancel / list, and trigger handling
  (notify, or run the transfer pipeline and confirm it automatically)
- Any unexpected error leaves the session idle with a generic reply
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Union

from loguru import logger

from .alert_monitor import (
    AlertAction,
    AlertCondition,
    AlertMonitor,
    InMemoryAlertStore,
    StandingAlert,
    TriggerEvent,
)
from .config import RouterConfig, load_config
from .execution_dispatcher import Broadcaster, DryRunBroadcaster, ExecutionDispatcher
from .guardrails import GuardrailValidator
from .intent_parser import FallbackIntentResolver, IntentResolver, TransferIntent
from .models import HandleResult, SessionState, TransferSession
from .notifier import LoggingNotificationSink, NotificationSink
from .price_monitor import GasOracle, PriceFeed
from .providers import build_default_adapters
from .route_aggregator import RouteAggregator
from .session_store import InMemorySessionStore, SessionStore
from .transaction_history import TransactionHistoryDB
from .transfer_state_machine import (
    ConfirmationReply,
    Event,
    SwapQuoter,
    TransferStateMachine,
    UserMessage,
)


class TransferAgent:
    """
    Session-aware front door of the transfer core

    Example:
        agent = TransferAgent.from_config(load_config("agent.yaml"))
        result = await agent.handle("user-1", "Send 50 USDC to 0xA1B2... on Base")
        result = await agent.handle("user-1", "yes")
    """

    GENERIC_ERROR = "Something went wrong on my end. Please try again."

    def __init__(self, state_machine: TransferStateMachine,
                 sessions: Optional[SessionStore] = None,
                 alert_monitor: Optional[AlertMonitor] = None,
                 notifier: Optional[NotificationSink] = None):
        self.state_machine = state_machine
        self.sessions = sessions or InMemorySessionStore()
        self.alert_monitor = alert_monitor or state_machine.alert_monitor
        self.notifier = notifier or LoggingNotificationSink()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._closeables = []

        if self.alert_monitor is not None and self.alert_monitor.handler is None:
            self.alert_monitor.handler = self.handle_trigger

    @classmethod
    def from_config(cls, config: Optional[RouterConfig] = None,
                    broadcaster: Optional[Broadcaster] = None,
                    resolver: Optional[IntentResolver] = None,
                    swap_quoter: Optional[SwapQuoter] = None,
                    notifier: Optional[NotificationSink] = None,
                    sessions: Optional[SessionStore] = None) -> "TransferAgent":
        """
        Wire the full agent from configuration

        Args:
            config: RouterConfig (defaults when omitted)
            broadcaster: Signing/broadcast capability (dry-run when omitted)
            resolver: Primary intent resolver; the local parser is the fallback
            swap_quoter: Source of same-network swap quotes
            notifier: Where alert notifications go
            sessions: Session store

        Returns:
            TransferAgent
        """
        config = config or RouterConfig()
        aggregator = RouteAggregator(build_default_adapters(config), config)
        price_feed = PriceFeed(config.price_exchange, config.price_cache_seconds)
        gas_oracle = GasOracle(config, price_feed)
        monitor = AlertMonitor(
            InMemoryAlertStore(), aggregator, price_feed, gas_oracle,
            interval_seconds=config.alert_interval_seconds,
        )
        history = TransactionHistoryDB(config.history_db_path) if config.history_db_path else None

        if broadcaster is None:
            logger.warning("⚠️ No broadcaster configured, transfers will be dry-run only")
            broadcaster = DryRunBroadcaster()

        state_machine = TransferStateMachine(
            aggregator=aggregator,
            dispatcher=ExecutionDispatcher(broadcaster, config),
            config=config,
            validator=GuardrailValidator(config),
            resolver=FallbackIntentResolver(resolver),
            swap_quoter=swap_quoter,
            alert_monitor=monitor,
            price_feed=price_feed,
            history=history,
        )
        agent = cls(state_machine, sessions=sessions, alert_monitor=monitor, notifier=notifier)
        agent._closeables = [aggregator, price_feed, gas_oracle] + ([history] if history else [])
        return agent

    @asynccontextmanager
    async def _session_lock(self, session_id: str):
        """Hold the session's lock; it is dropped once nobody holds or waits for it"""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if self._lock_users[session_id] == 0:
                del self._lock_users[session_id]
                del self._locks[session_id]

    def _load_session(self, session_id: str, wallet_address: Optional[str] = None) -> TransferSession:
        session = self.sessions.get(session_id)
        if session is None:
            session = TransferSession(session_id=session_id, wallet_address=wallet_address)
        elif wallet_address:
            session.wallet_address = wallet_address
        return session

    async def _advance_locked(self, session: TransferSession, event: Event) -> HandleResult:
        """advance() with unexpected errors turned into an idle session; caller holds the lock"""
        try:
            result = await self.state_machine.advance(session, event)
        except Exception:
            logger.exception(f"✗ {session.session_id}: unexpected error while handling {type(event).__name__}")
            session.pending_transfer = None
            session.state = SessionState.IDLE
            session.record('assistant', self.GENERIC_ERROR)
            result = HandleResult(self.GENERIC_ERROR, SessionState.IDLE)
        self.sessions.put(session.session_id, session)
        return result

    async def handle(self, session_id: str, message: Union[str, Event],
                     wallet_address: Optional[str] = None) -> HandleResult:
        """
        Handle one user message (or pre-parsed intent) for a session

        Args:
            session_id: Conversation id
            message: Raw text, a ConfirmationReply, or an intent
            wallet_address: Connected wallet, if the channel knows it

        Returns:
            HandleResult(message, state, data)
        """
        event = UserMessage(message) if isinstance(message, str) else message
        async with self._session_lock(session_id):
            session = self._load_session(session_id, wallet_address)
            logger.debug(f"{session_id} | state={session.state.value} | {type(event).__name__}")
            return await self._advance_locked(session, event)

    def register_alert(self, session_id: str, condition: AlertCondition,
                       action: AlertAction = AlertAction.NOTIFY,
                       transfer: Optional[TransferIntent] = None) -> str:
        if self.alert_monitor is None:
            raise ValueError("Alert monitoring is not configured")
        return self.alert_monitor.register(session_id, condition, action, transfer)

    def cancel_alert(self, alert_id: str) -> bool:
        if self.alert_monitor is None:
            return False
        return self.alert_monitor.cancel(alert_id)

    def list_alerts(self, session_id: str) -> List[StandingAlert]:
        if self.alert_monitor is None:
            return []
        return self.alert_monitor.list(session_id)

    async def handle_trigger(self, event: TriggerEvent):
        """
        Consume one fired alert

        notify alerts go to the notification sink. auto_execute alerts run the
        stored transfer through the same pipeline and confirm it, under the
        session's lock; if the session is busy the user is notified instead.
        """
        if event.action == AlertAction.NOTIFY or event.transfer is None:
            await self.notifier.notify(event.session_id, event.describe(), event.to_dict())
            return

        async with self._session_lock(event.session_id):
            session = self._load_session(event.session_id)
            if session.state != SessionState.IDLE:
                message = (f"{event.describe()}\n\nI didn't execute the transfer automatically "
                           f"because you have another transaction in progress.")
                await self.notifier.notify(event.session_id, message, event.to_dict())
                return

            session.record('system', event.describe())
            result = await self._advance_locked(session, event.transfer)
            if result.state == SessionState.AWAITING_CONFIRMATION:
                result = await self._advance_locked(session, ConfirmationReply(True, origin='alert'))

        await self.notifier.notify(event.session_id, f"{event.describe()}\n\n{result.message}",
                                   {'trigger': event.to_dict(), 'result': result.data})

    def start_monitor(self):
        if self.alert_monitor is not None:
            self.alert_monitor.start()

    async def close(self):
        if self.alert_monitor is not None:
            await self.alert_monitor.stop()
        for resource in self._closeables:
            result = resource.close()
            if asyncio.iscoroutine(result):
                await result
        self._closeables = []


async def main():
    """Walk through a dry-run conversation"""
    agent = TransferAgent.from_config(load_config())
    session_id = "demo"
    address = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"

    try:
        for text in [f"Send 25 USDC to {address} on Base", "yes", "show my alerts"]:
            print(f"\n> {text}")
            result = await agent.handle(session_id, text)
            print(f"[{result.state.value}] {result.message}")
    finally:
        await agent.close()


if __name__ == "__main__":
    asyncio.run(main())
