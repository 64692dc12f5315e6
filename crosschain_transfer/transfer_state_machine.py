"""
Transfer State Machine

Multi-turn lifecycle of a transfer conversation:

    idle → awaiting_confirmation → executing → idle
                 │                     │
                 └── no / expiry ──→ idle ←── failure (via error)

Only a transfer (or swap + transfer) that found an execution-ready route,
passed every guardrail and stayed under the hard-stop fee ratio can reach
awaiting_confirmation. A pending transfer is dispatched at most once.
"""

import math
import uuid
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Union

from loguru import logger

from .alert_monitor import AlertAction, AlertCondition, AlertMonitor
from .config import RouterConfig
from .errors import FailureKind
from .execution_dispatcher import ExecutionDispatcher, ExecutionFailure
from .guardrails import GuardrailValidator
from .intent_parser import (
    AlertIntent,
    ClarificationNeeded,
    FallbackIntentResolver,
    Intent,
    IntentResolver,
    ParseContext,
    QueryIntent,
    SwapAndTransferIntent,
    TransferIntent,
    classify_confirmation,
    is_bare_reply,
)
from .models import (
    HandleResult,
    PendingTransfer,
    Quote,
    RankedRouteSet,
    Receipt,
    RouteRequest,
    SessionState,
    SwapQuote,
    TransferRequest,
    TransferSession,
    utc_now,
)
from .networks import detect_network, supported_assets
from .price_monitor import bridge_fee_snapshot
from .route_aggregator import RouteAggregator
from .transaction_history import TransactionHistoryDB


@dataclass(frozen=True)
class UserMessage:
    text: str


@dataclass(frozen=True)
class ConfirmationReply:
    """Explicit yes/no, e.g. from a button or an auto-executing alert"""
    approved: bool
    origin: str = 'user'


Event = Union[UserMessage, ConfirmationReply, TransferIntent, SwapAndTransferIntent,
              AlertIntent, QueryIntent, ClarificationNeeded]


class SwapQuoter(Protocol):
    async def quote_swap(self, network: str, from_asset: str, to_asset: str,
                         amount: float) -> Optional[SwapQuote]:
        ...


class PriceSource(Protocol):
    async def get_price(self, asset: str) -> Optional[float]:
        ...


GREETING = (
    "Hey! I'm your cross-chain transfer assistant. Try saying something like:\n\n"
    "• \"Send 100 USDT to 0xA1B2...\"\n"
    "• \"Move 50 USDC to my Solana wallet 7xB2...\"\n"
    "• \"Alert me when fees to Base drop below $0.50\"\n\n"
    "What would you like to do?"
)

CONFIRM_PROMPT = "Please reply YES to confirm the transaction or NO to cancel it."


class TransferStateMachine:
    """
    Drives one session at a time through the transfer lifecycle

    The caller must serialize advance() per session; the agent holds a lock
    per session id around every call.
    """

    REFERENCE_AMOUNT = 100.0

    def __init__(self, aggregator: RouteAggregator, dispatcher: ExecutionDispatcher,
                 config: Optional[RouterConfig] = None,
                 validator: Optional[GuardrailValidator] = None,
                 resolver: Optional[IntentResolver] = None,
                 swap_quoter: Optional[SwapQuoter] = None,
                 alert_monitor: Optional[AlertMonitor] = None,
                 price_feed: Optional[PriceSource] = None,
                 history: Optional[TransactionHistoryDB] = None):
        self.config = config or RouterConfig()
        self.aggregator = aggregator
        self.dispatcher = dispatcher
        self.validator = validator or GuardrailValidator(self.config)
        self.resolver = resolver or FallbackIntentResolver()
        self.swap_quoter = swap_quoter
        self.alert_monitor = alert_monitor
        self.price_feed = price_feed
        self.history = history

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def advance(self, session: TransferSession, event: Event) -> HandleResult:
        """
        Apply one event to a session

        Args:
            session: Session to mutate
            event: User message, confirmation reply or a pre-parsed intent

        Returns:
            HandleResult with the reply text and the resulting state
        """
        text = event.text if isinstance(event, UserMessage) else None
        if text is not None:
            session.record('user', text)

        expired = self._release_if_expired(session)

        if session.state == SessionState.EXECUTING:
            return self._reply(session, "Your transfer is still being submitted. Please wait a moment.")

        if session.state == SessionState.ERROR:
            session.state = SessionState.IDLE
            session.pending_transfer = None

        if session.state == SessionState.AWAITING_CONFIRMATION:
            return await self._on_confirmation(session, event)

        if isinstance(event, ConfirmationReply) or (text is not None and is_bare_reply(text)):
            if expired:
                return self._reply(session, "That confirmation expired, so nothing was sent. "
                                            "Send the transfer request again to get a fresh quote.")
            return self._reply(session, "There's no pending transaction to confirm or cancel. " + GREETING)

        if text is not None:
            intent = await self.resolver.parse(text, ParseContext(
                connected_wallet=session.wallet_address,
                history_text=session.recent_text(),
                home_network=self.config.home_network,
            ))
        else:
            intent = event

        return await self._on_intent(session, intent)

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def _release_if_expired(self, session: TransferSession) -> bool:
        ttl = self.config.confirmation_ttl_seconds
        pending = session.pending_transfer
        if (ttl is None or pending is None or pending.dispatched
                or session.state != SessionState.AWAITING_CONFIRMATION):
            return False
        age = (utc_now() - pending.created_at).total_seconds()
        if age <= ttl:
            return False
        logger.info(f"⏱️ {session.session_id}: pending {pending.transfer_id} expired after {age:.0f}s")
        session.pending_transfer = None
        session.state = SessionState.IDLE
        return True

    async def _on_confirmation(self, session: TransferSession, event: Event) -> HandleResult:
        if isinstance(event, ConfirmationReply):
            decision = event.approved
        elif isinstance(event, UserMessage):
            decision = classify_confirmation(event.text)
        else:
            decision = None

        if decision is None:
            return self._reply(session, CONFIRM_PROMPT)

        if not decision:
            pending = session.pending_transfer
            session.pending_transfer = None
            session.state = SessionState.IDLE
            logger.info(f"{session.session_id}: cancelled {pending.transfer_id if pending else 'pending transfer'}")
            return self._reply(session, "Transaction cancelled. No funds were moved. "
                                        "Let me know if you'd like to try something different.")

        return await self._execute(session)

    async def _execute(self, session: TransferSession) -> HandleResult:
        pending = session.pending_transfer
        if pending is None or pending.dispatched:
            session.pending_transfer = None
            session.state = SessionState.IDLE
            return self._reply(session, "There's no pending transaction to execute.")

        pending.dispatched = True
        session.state = SessionState.EXECUTING
        logger.info(f"{session.session_id}: executing {pending.transfer_id}")

        try:
            outcome = await self.dispatcher.execute(pending)
        finally:
            session.pending_transfer = None

        self._record_outcome(session, pending, outcome)

        if isinstance(outcome, Receipt):
            session.state = SessionState.IDLE
            return self._reply(session, self._receipt_text(outcome), data={'receipt': outcome.to_dict()})

        session.state = SessionState.ERROR
        message = self._failure_text(outcome)
        session.record('assistant', message)
        session.state = SessionState.IDLE
        return HandleResult(
            message=message,
            state=SessionState.ERROR,
            data={'failure': outcome.to_dict(), 'failure_kind': outcome.kind.value},
        )

    def _record_outcome(self, session: TransferSession, pending: PendingTransfer,
                        outcome: Union[Receipt, ExecutionFailure]):
        """Write the dispatch outcome to the ledger; a ledger error never replaces the outcome"""
        if self.history is None:
            return
        try:
            if isinstance(outcome, Receipt):
                self.history.record_receipt(session.session_id, pending, outcome)
            else:
                self.history.record_failure(session.session_id, pending, outcome)
        except Exception:
            logger.exception(f"✗ {pending.transfer_id}: could not write history, outcome kept")

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    async def _on_intent(self, session: TransferSession, intent: Intent) -> HandleResult:
        if isinstance(intent, TransferIntent):
            return await self._process_transfer(session, intent)
        if isinstance(intent, SwapAndTransferIntent):
            return await self._process_swap_and_transfer(session, intent)
        if isinstance(intent, AlertIntent):
            return self._register_alert(session, intent)
        if isinstance(intent, QueryIntent):
            return await self._answer_query(session, intent)
        if isinstance(intent, ClarificationNeeded):
            return self._reply(session, self._clarification_text(intent))
        return self._reply(session, GREETING)

    async def _process_transfer(self, session: TransferSession, intent: TransferIntent,
                                swap: Optional[SwapQuote] = None) -> HandleResult:
        source = (intent.source_network or self.config.home_network).lower()
        hint = " ".join(filter(None, [session.recent_text(), intent.raw_text]))

        detection = detect_network(intent.destination_address, hint)
        destination = (intent.destination_network or "").lower() or None
        if destination is None:
            if not detection.known:
                return self._reply(session, (
                    "I see the wallet address, but I'm not sure which network it belongs to. "
                    "Could you tell me the destination network? For example:\n\n"
                    "• \"...on Base\"\n• \"...on Solana\"\n• \"...on Ethereum\"\n• \"...on Polygon\""
                ))
            destination = detection.network
        if detection.unsupported:
            return self._reply(session, f"⚠️ {detection.note}")

        try:
            route = RouteRequest(source, destination, intent.asset, intent.amount, intent.policy)
        except ValueError as e:
            return self._reply(session, f"I can't use that amount: {e}")

        request = TransferRequest(
            route=route,
            destination_address=intent.destination_address,
            source_address=intent.source_address or session.wallet_address,
            context_hint=hint,
        )

        routes = await self.aggregator.find_routes(route)
        best = routes.best

        if best is None:
            verdict = self.validator.validate(request, None)
            warnings = "\n".join(routes.warning_messages()) or "This route may not be supported yet."
            return self._reply(session, (
                f"I couldn't find a working route for {route.asset} from {source} to {destination} right now.\n\n"
                f"{warnings}"
            ), data={
                'failure_kind': FailureKind.NO_ROUTE_FOUND.value,
                'routes': routes.to_dict(),
                'validation': verdict.to_dict(),
            })

        if not best.execution_ready:
            found = ", ".join(f"{q.provider_id} (${q.fee_usd:.2f})" for q in routes.all)
            return self._reply(session, (
                f"I found quotes for {route.describe()} ({found}), but none of these providers "
                f"can be executed automatically yet. Try a different destination network."
            ), data={'failure_kind': FailureKind.NO_ROUTE_FOUND.value, 'routes': routes.to_dict()})

        verdict = self.validator.validate(request, best)
        if not verdict.valid:
            message = "I wasn't able to process that transfer:\n\n" + verdict.summary()
            return self._reply(session, message, data={
                'failure_kind': FailureKind.VALIDATION_FAILED.value,
                'validation': verdict.to_dict(),
            })

        fee_ratio = best.fee_usd / route.amount
        if fee_ratio > self.config.hard_stop_fee_ratio:
            suggested = math.ceil(best.fee_usd / 0.01)
            return self._reply(session, (
                f"⚠️ I found a route via {best.provider_id}, but the fee is ${best.fee_usd:.2f}, "
                f"which is {fee_ratio:.0%} of your {route.amount:g} {route.asset} transfer.\n\n"
                f"This is too high to proceed. You have two options:\n\n"
                f"1. Send a larger amount. Fees are mostly fixed, so sending {suggested} "
                f"would bring the fee below 1%.\n"
                f"2. Wait and try later. Fees drop when networks are less congested.\n\n"
                f"Would you like to adjust the amount and try again?"
            ), data={
                'failure_kind': FailureKind.HARD_STOP_FEE_RATIO.value,
                'fee_ratio': fee_ratio,
                'best': best.to_dict(),
            })

        pending = PendingTransfer(
            transfer_id=f"tx_{uuid.uuid4().hex[:12]}",
            request=request,
            quote=best,
            verdict=verdict,
            route_set=routes,
            swap=swap,
        )
        session.pending_transfer = pending
        session.state = SessionState.AWAITING_CONFIRMATION
        logger.info(f"{session.session_id}: awaiting confirmation for {pending.transfer_id} via {best.provider_id}")

        message = self._preview_text(request, best, routes, swap, detection.note if not intent.destination_network else "")
        extra = routes.warning_messages() + list(verdict.warnings)
        if extra:
            message += "\n\n" + "\n".join(f"⚠️ {w}" for w in extra)
        if verdict.suggestions:
            message += "\n\n" + "\n".join(f"💡 {s}" for s in verdict.suggestions)

        return self._reply(session, message, data={
            'transfer_id': pending.transfer_id,
            'destination_network': destination,
            'network_note': detection.note,
            'best': best.to_dict(),
            'alternatives': [q.to_dict() for q in routes.alternatives],
            'validation': verdict.to_dict(),
            'swap': swap.provider_id if swap else None,
        })

    async def _process_swap_and_transfer(self, session: TransferSession,
                                         intent: SwapAndTransferIntent) -> HandleResult:
        source = (intent.source_network or self.config.home_network).lower()
        if self.swap_quoter is None:
            return self._reply(session, f"Swaps aren't available right now. Send {intent.to_asset} "
                                        f"directly, or swap {intent.from_asset} yourself first.")

        swap = await self.swap_quoter.quote_swap(source, intent.from_asset, intent.to_asset, intent.amount)
        if swap is None:
            return self._reply(session, f"I couldn't find a swap route for {intent.from_asset} → "
                                        f"{intent.to_asset} on {source}.")

        transfer = TransferIntent(
            destination_address=intent.destination_address,
            asset=intent.to_asset,
            amount=swap.amount_out,
            destination_network=intent.destination_network,
            source_network=source,
            policy=intent.policy,
            source_address=session.wallet_address,
            raw_text=intent.raw_text,
        )
        return await self._process_transfer(session, transfer, swap=swap)

    def _register_alert(self, session: TransferSession, intent: AlertIntent) -> HandleResult:
        if self.alert_monitor is None:
            return self._reply(session, "Alerts aren't enabled on this agent.")

        transfer = intent.transfer
        try:
            condition = AlertCondition(
                kind=intent.condition,
                threshold=intent.threshold,
                asset=intent.asset,
                source_network=(transfer.source_network if transfer and transfer.source_network
                                else self.config.home_network),
                destination_network=intent.destination_network,
                reference_amount=transfer.amount if transfer else self.REFERENCE_AMOUNT,
            )
            alert_id = self.alert_monitor.register(session.session_id, condition,
                                                   AlertAction(intent.action), transfer)
        except ValueError as e:
            return self._reply(session, f"I couldn't set up that alert: {e}")

        outcome = ("automatically prepare and execute the transfer" if intent.action == AlertAction.AUTO_EXECUTE.value
                   else "notify you")
        return self._reply(session, (
            f"✅ Alert registered!\n\nI'll watch for: {condition.describe()}\n"
            f"When triggered, I'll {outcome}.\n\nAlert ID: {alert_id}"
        ), data={'alert_id': alert_id})

    async def _answer_query(self, session: TransferSession, intent: QueryIntent) -> HandleResult:
        if intent.query_type == 'fee_check':
            network = intent.network or 'base'
            snapshot = await bridge_fee_snapshot(self.aggregator, self.config.home_network, network,
                                                 intent.asset, self.REFERENCE_AMOUNT)
            if not snapshot.providers:
                return self._reply(session, f"No route found for {intent.asset} to {network}.",
                                   data={'fees': snapshot.to_dict()})
            best = snapshot.providers[0]
            return self._reply(session, (
                f"Current estimated fees for {intent.asset} → {network} "
                f"(for {self.REFERENCE_AMOUNT:g} {intent.asset}):\n\n"
                f"🏆 Best: {best['provider']}: ${best['fee_usd']:.2f} (~{best['eta_minutes']:g} min)\n"
                f"Range: ${snapshot.min_fee_usd:.2f} - ${snapshot.max_fee_usd:.2f} "
                f"across {len(snapshot.providers)} provider(s)\n\n"
                f"Fees vary based on network congestion."
            ), data={'fees': snapshot.to_dict()})

        if intent.query_type == 'price_check':
            if self.price_feed is None:
                return self._reply(session, "Price data isn't available right now.")
            price = await self.price_feed.get_price(intent.asset)
            if price is None:
                return self._reply(session, f"I couldn't find a price for {intent.asset}.")
            return self._reply(session, f"💰 {intent.asset} is trading at ${price:,.4f}.",
                               data={'asset': intent.asset, 'price': price})

        if intent.query_type == 'alerts':
            alerts = self.alert_monitor.list(session.session_id) if self.alert_monitor else []
            if not alerts:
                return self._reply(session, "You have no alerts set up.")
            lines = [f"• {a.alert_id}: {a.condition.describe()} "
                     f"({'triggered' if a.triggered else a.action.value})" for a in alerts]
            return self._reply(session, "Your alerts:\n\n" + "\n".join(lines),
                               data={'alerts': [a.to_dict() for a in alerts]})

        return self._reply(session, "I can check fees, prices and your alerts. What would you like to know?")

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def _reply(self, session: TransferSession, message: str, data: Optional[Dict] = None) -> HandleResult:
        session.record('assistant', message)
        return HandleResult(message=message, state=session.state, data=data)

    @staticmethod
    def _preview_text(request: TransferRequest, quote: Quote, routes: RankedRouteSet,
                      swap: Optional[SwapQuote], network_note: str = "") -> str:
        route = request.route
        address = request.destination_address
        lines = []
        if swap is not None:
            lines.append(f"🔄 First I'll swap {swap.amount_in:g} {swap.from_asset} → {swap.to_asset} "
                         f"on {swap.network} via {swap.provider_id} ({swap.price_impact:.2%} price impact).")
        lines.append(
            f"I'm about to send {route.amount:g} {route.asset} from {route.source_network} to your "
            f"{route.destination_network} wallet ({address[:8]}...) via {quote.provider_id}. "
            f"The estimated fee is ${quote.fee_usd:.2f} and it should arrive in ~{quote.eta_minutes:g} minutes."
        )
        if network_note:
            lines.append(f"ℹ️ {network_note}")
        if routes.alternatives:
            alts = ", ".join(f"{q.provider_id} ${q.fee_usd:.2f}" for q in routes.alternatives[:3])
            lines.append(f"Other routes: {alts}")
        lines.append("Reply YES to confirm or NO to cancel.")
        return "\n\n".join(lines)

    @staticmethod
    def _receipt_text(receipt: Receipt) -> str:
        return (
            f"✅ Transfer submitted successfully!\n\n"
            f"📦 {receipt.amount:g} {receipt.asset} → {receipt.destination_network} "
            f"({receipt.destination_address[:8]}...)\n"
            f"🌉 Provider: {receipt.provider_id}\n"
            f"💸 Fee: ${receipt.fee_usd:.2f}\n"
            f"⏱️ Estimated arrival: {receipt.eta_minutes:g} minutes\n"
            f"🔗 Track: {receipt.explorer_link}"
        )

    @staticmethod
    def _failure_text(failure: ExecutionFailure) -> str:
        text = (f"❌ Transfer failed during the {failure.step.value} step on {failure.provider_id}: "
                f"{failure.error_text}.")
        if failure.authorization_tx:
            text += (f"\n\nThe spend authorization ({failure.authorization_tx[:12]}...) went through, "
                     f"but no funds were transferred.")
        text += "\n\nTry again in a moment, or try a smaller amount first."
        return text

    @staticmethod
    def _clarification_text(intent: ClarificationNeeded) -> str:
        missing = set(intent.missing_fields)
        partial = intent.partial or {}

        if {'destination_address', 'amount'} <= missing:
            return ("Sure, I can help with that! To send a transfer I just need two things from you:\n\n"
                    "1. The destination wallet address (where to send it)\n"
                    "2. The amount and asset (e.g. 100 USDT)\n\n"
                    "Example: \"Send 50 USDC to 0xA1B2C3...\"")
        if 'destination_address' in missing:
            amount = (f"{partial['amount']:g} {partial.get('asset') or 'USDC'}"
                      if partial.get('amount') else "the funds")
            return f"Got it, you want to send {amount}. Where should I send it? Please give me the destination wallet address."
        if 'amount' in missing:
            return ("I can see the destination address. How much would you like to send, and which asset? "
                    "For example: \"Send 100 USDT\" or \"Send 50 USDC\"")
        if 'asset' in missing:
            assets = ", ".join(supported_assets('celo'))
            return f"Almost there. Which asset would you like to send? I support {assets} on Celo."
        return "I need a little more detail. Could you say something like: \"Send 100 USDT to 0xA12345... on Base\"?"
