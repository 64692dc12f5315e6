"""
Execution Dispatcher

Carries a confirmed PendingTransfer out as an ordered sequence of steps:

0. swap (only when the transfer was composed from a swap)
1. spend authorization of the exact amount to the provider's spender contract
2. provider-specific transfer action

Each step is handed to a Broadcaster as a payload; signing and broadcasting
live behind that interface. The first failing step aborts the sequence and
is reported as an ExecutionFailure together with whatever already
succeeded. Nothing is retried or rolled back.
"""

import hashlib
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Protocol, Tuple, Union

from loguru import logger

from .config import RouterConfig
from .errors import ConfigurationError, ExecutionStepFailed, FailureKind, TransferAgentError
from .models import ExecutionMethod, PendingTransfer, Receipt
from .networks import explorer_link, get_network, to_base_units


class ExecutionStep(str, Enum):
    PRECHECK = "precheck"
    SWAP = "swap"
    AUTHORIZATION = "authorization"
    SUBMISSION = "submission"


@dataclass
class ExecutionFailure:
    """A dispatch that stopped at some step"""
    step: ExecutionStep
    provider_id: str
    error_text: str
    kind: FailureKind = FailureKind.EXECUTION_STEP_FAILED
    authorization_tx: Optional[str] = None
    swap_tx: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'step': self.step.value,
            'provider_id': self.provider_id,
            'error': self.error_text,
            'kind': self.kind.value,
            'authorization_tx': self.authorization_tx,
            'swap_tx': self.swap_tx,
        }


class Broadcaster(Protocol):
    """Signs and broadcasts one payload, returning its transaction reference"""

    async def submit(self, network: str, payload: Dict) -> str:
        """Raises NetworkError if the payload could not be submitted"""
        ...


class DryRunBroadcaster:
    """
    Broadcaster that never touches a network

    Returns a deterministic pseudo transaction hash per payload and keeps
    every submission for inspection.
    """

    def __init__(self):
        self.submissions: List[Tuple[str, Dict]] = []

    async def submit(self, network: str, payload: Dict) -> str:
        self.submissions.append((network, payload))
        digest = hashlib.sha256(
            json.dumps([network, payload, len(self.submissions)], sort_keys=True, default=str).encode()
        ).hexdigest()
        tx = f"0x{digest}"
        logger.info(f"[dry-run] {payload.get('action')} on {network}: {tx[:18]}...")
        return tx


@dataclass
class ExecutionContext:
    """Everything a strategy needs to build its transfer payload"""
    pending: PendingTransfer
    token_address: str
    amount_units: int
    spender: Optional[str]
    sender: Optional[str]

    @property
    def source(self) -> str:
        return self.pending.request.route.source_network

    @property
    def destination(self) -> str:
        return self.pending.request.route.destination_network


class TransferStrategy:
    """Builds the provider-specific transfer payload"""

    method: ExecutionMethod
    requires_authorization = True

    def build_payload(self, ctx: ExecutionContext) -> Dict:
        raise NotImplementedError

    @staticmethod
    def _network(name: str):
        info = get_network(name)
        if info is None:
            raise ConfigurationError(f"Unknown network '{name}'")
        return info


class AcrossRelayStrategy(TransferStrategy):
    method = ExecutionMethod.ACROSS_RELAY

    def build_payload(self, ctx: ExecutionContext) -> Dict:
        dst = self._network(ctx.destination)
        if not dst.across_id:
            raise ConfigurationError(f"Across has no deployment on {ctx.destination}")
        raw = ctx.pending.quote.raw_payload or {}
        return {
            'action': 'spoke_pool_deposit',
            'contract': ctx.spender,
            'recipient': ctx.pending.request.destination_address,
            'token': ctx.token_address,
            'amount': ctx.amount_units,
            'destination_chain_id': dst.across_id,
            'relay_fee_pct': raw.get('relayFeePct'),
            'quote_timestamp': raw.get('timestamp', int(time.time())),
        }


class WormholeNttStrategy(TransferStrategy):
    method = ExecutionMethod.WORMHOLE_NTT
    # Token bridge transfer manages its own allowance
    requires_authorization = False

    def build_payload(self, ctx: ExecutionContext) -> Dict:
        src = self._network(ctx.source)
        dst = self._network(ctx.destination)
        if not src.wormhole_id or not dst.wormhole_id:
            raise ConfigurationError(f"Wormhole does not connect {ctx.source} and {ctx.destination}")
        return {
            'action': 'token_bridge_transfer',
            'sender': ctx.sender,
            'source_chain_id': src.wormhole_id,
            'destination_chain_id': dst.wormhole_id,
            'recipient': ctx.pending.request.destination_address,
            'token': ctx.token_address,
            'amount': ctx.amount_units,
        }


class AxelarGmpStrategy(TransferStrategy):
    method = ExecutionMethod.AXELAR_GMP

    def build_payload(self, ctx: ExecutionContext) -> Dict:
        dst = self._network(ctx.destination)
        if not dst.axelar_name:
            raise ConfigurationError(f"Axelar does not support {ctx.destination}")
        return {
            'action': 'gateway_send_token',
            'contract': ctx.spender,
            'destination_chain': dst.axelar_name,
            'recipient': ctx.pending.request.destination_address,
            'symbol': ctx.pending.request.route.asset,
            'amount': ctx.amount_units,
        }


class CelerCbridgeStrategy(TransferStrategy):
    method = ExecutionMethod.CELER_CBRIDGE
    MAX_SLIPPAGE = 3000

    def build_payload(self, ctx: ExecutionContext) -> Dict:
        dst = self._network(ctx.destination)
        if not dst.evm_chain_id:
            raise ConfigurationError(f"Celer does not support {ctx.destination}")
        return {
            'action': 'cbridge_send',
            'contract': ctx.spender,
            'recipient': ctx.pending.request.destination_address,
            'token': ctx.token_address,
            'amount': ctx.amount_units,
            'destination_chain_id': dst.evm_chain_id,
            'nonce': int(ctx.pending.created_at.timestamp() * 1000),
            'max_slippage': self.MAX_SLIPPAGE,
        }


class LayerZeroStargateStrategy(TransferStrategy):
    method = ExecutionMethod.LAYERZERO_STARGATE
    POOL_IDS = {'USDC': 1, 'USDT': 2}
    MIN_AMOUNT_BPS = 9900  # 1% slippage

    def build_payload(self, ctx: ExecutionContext) -> Dict:
        dst = self._network(ctx.destination)
        asset = ctx.pending.request.route.asset
        if not dst.layerzero_id:
            raise ConfigurationError(f"LayerZero does not support {ctx.destination}")
        if asset not in self.POOL_IDS:
            raise ConfigurationError(f"No Stargate pool for {asset}")
        return {
            'action': 'stargate_swap',
            'contract': ctx.spender,
            'destination_chain_id': dst.layerzero_id,
            'source_pool_id': self.POOL_IDS[asset],
            'destination_pool_id': self.POOL_IDS[asset],
            'refund_address': ctx.sender,
            'amount': ctx.amount_units,
            'min_amount': ctx.amount_units * self.MIN_AMOUNT_BPS // 10000,
            'recipient': ctx.pending.request.destination_address,
        }


def default_strategies() -> Dict[ExecutionMethod, TransferStrategy]:
    strategies = [
        AcrossRelayStrategy(),
        WormholeNttStrategy(),
        AxelarGmpStrategy(),
        CelerCbridgeStrategy(),
        LayerZeroStargateStrategy(),
    ]
    return {s.method: s for s in strategies}


class ExecutionDispatcher:
    """
    Runs confirmed transfers through a Broadcaster

    The strategy table must cover every ExecutionMethod; a gap is a
    ConfigurationError at construction time.
    """

    def __init__(self, broadcaster: Broadcaster, config: Optional[RouterConfig] = None,
                 strategies: Optional[Dict[ExecutionMethod, TransferStrategy]] = None):
        self.broadcaster = broadcaster
        self.config = config or RouterConfig()
        self.strategies = strategies if strategies is not None else default_strategies()

        missing = [m.value for m in ExecutionMethod if m not in self.strategies]
        if missing:
            raise ConfigurationError("Strategy table does not cover every execution method",
                                     {'missing': ", ".join(missing)})

    def _prepare(self, pending: PendingTransfer) -> Tuple[TransferStrategy, ExecutionContext]:
        quote = pending.quote
        route = pending.request.route

        if not quote.execution_ready:
            raise ConfigurationError(f"{quote.provider_id} route is not execution-ready")

        strategy = self.strategies.get(quote.execution_method)
        if strategy is None:
            raise ConfigurationError(f"No strategy for execution method '{quote.execution_method}'")

        token_address = self.config.token_address(route.source_network, route.asset)
        if not token_address:
            raise ConfigurationError(f"Token {route.asset} address not configured for {route.source_network}")

        spender = self.config.spender_for(quote.execution_method, route.source_network)
        if strategy.requires_authorization and not spender:
            raise ConfigurationError(
                f"Spender contract unknown for {quote.execution_method.value} on {route.source_network}"
            )

        ctx = ExecutionContext(
            pending=pending,
            token_address=token_address,
            amount_units=to_base_units(route.amount, route.asset),
            spender=spender,
            sender=self.config.agent_wallet_address,
        )
        return strategy, ctx

    async def _submit(self, step: ExecutionStep, provider_id: str, network: str, payload: Dict) -> str:
        """Hand one step to the broadcaster; any broadcast error becomes ExecutionStepFailed"""
        try:
            return await self.broadcaster.submit(network, payload)
        except ConfigurationError:
            raise
        except TransferAgentError as e:
            raise ExecutionStepFailed(step.value, provider_id, str(e)) from e
        except Exception as e:
            logger.exception(f"✗ Unexpected broadcaster error during {step.value} step")
            raise ExecutionStepFailed(step.value, provider_id, str(e) or type(e).__name__) from e

    async def execute(self, pending: PendingTransfer) -> Union[Receipt, ExecutionFailure]:
        """
        Dispatch a confirmed transfer

        Args:
            pending: Transfer the user confirmed

        Returns:
            Receipt on success, ExecutionFailure describing the failed step otherwise
        """
        quote = pending.quote
        route = pending.request.route
        provider_id = quote.provider_id
        swap_tx = None
        authorization_tx = None

        logger.info(f"🚀 Dispatching {pending.transfer_id}: {route.describe()} via {provider_id}")

        try:
            strategy, ctx = self._prepare(pending)
        except ConfigurationError as e:
            logger.error(f"✗ {pending.transfer_id}: {e}")
            return ExecutionFailure(ExecutionStep.PRECHECK, provider_id, str(e),
                                    kind=FailureKind.CONFIGURATION_ERROR)

        step = ExecutionStep.SWAP
        try:
            if pending.swap is not None:
                swap = pending.swap
                swap_tx = await self._submit(step, provider_id, swap.network, {
                    'action': 'swap',
                    'provider': swap.provider_id,
                    'from_asset': swap.from_asset,
                    'to_asset': swap.to_asset,
                    'amount_in': to_base_units(swap.amount_in, swap.from_asset),
                    'quote': swap.raw_payload,
                })
                logger.info(f"✓ Swap submitted: {swap_tx}")

            step = ExecutionStep.AUTHORIZATION
            if strategy.requires_authorization:
                authorization_tx = await self._submit(step, provider_id, route.source_network, {
                    'action': 'approve',
                    'token': ctx.token_address,
                    'spender': ctx.spender,
                    'amount': ctx.amount_units,
                })
                logger.info(f"✓ Spend authorization confirmed: {authorization_tx}")

            step = ExecutionStep.SUBMISSION
            payload = strategy.build_payload(ctx)
            transfer_tx = await self._submit(step, provider_id, route.source_network, payload)

        except ConfigurationError as e:
            logger.error(f"✗ {pending.transfer_id}: {step.value} step misconfigured: {e}")
            return ExecutionFailure(step, provider_id, str(e), FailureKind.CONFIGURATION_ERROR,
                                    authorization_tx, swap_tx)
        except ExecutionStepFailed as e:
            logger.error(f"✗ {pending.transfer_id}: {e}")
            return ExecutionFailure(step, provider_id, e.provider_error, FailureKind.EXECUTION_STEP_FAILED,
                                    authorization_tx, swap_tx)
        except Exception as e:
            logger.exception(f"✗ {pending.transfer_id}: unexpected error during {step.value} step")
            return ExecutionFailure(step, provider_id, str(e) or type(e).__name__,
                                    FailureKind.EXECUTION_STEP_FAILED, authorization_tx, swap_tx)

        logger.info(f"✅ Transfer submitted: {transfer_tx}")
        return Receipt(
            transfer_id=pending.transfer_id,
            provider_id=provider_id,
            execution_method=quote.execution_method,
            source_network=route.source_network,
            destination_network=route.destination_network,
            destination_address=pending.request.destination_address,
            asset=route.asset,
            amount=route.amount,
            fee_usd=quote.fee_usd,
            eta_minutes=quote.eta_minutes,
            transfer_tx=transfer_tx,
            authorization_tx=authorization_tx,
            swap_tx=swap_tx,
            explorer_link=explorer_link(route.source_network, transfer_tx),
        )
