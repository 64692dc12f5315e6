"""
Cross-Chain Transfer Agent

Moves stablecoins from a home network (Celo by default) to other networks
without the user choosing a bridge.

Components:
- route_aggregator: Concurrent quote collection across bridge providers
- route_ranker: cheapest / fastest / safest / balanced ordering
- guardrails: Pre-flight safety checks
- transfer_state_machine: idle → awaiting_confirmation → executing lifecycle
- execution_dispatcher: Authorization + provider transfer via a Broadcaster
- alert_monitor: Fee, price and gas alerts with notify or auto-execute
- transaction_history: SQLite ledger of dispatch outcomes
- transfer_agent: Session-serialized entry point for channel adapters

Safety:
1. Guardrails - address, asset, amount, route quality, restricted assets
2. Hard Stop - fee above 25% of the amount never reaches confirmation
3. Explicit Confirmation - YES/NO with expiry
4. At-Most-Once Dispatch - a confirmed transfer is submitted once
"""

from .errors import (
    FailureKind,
    TransferAgentError,
    ProviderUnavailable,
    NetworkError,
    ExecutionStepFailed,
    ConfigurationError,
)
from .models import (
    OptimizationPolicy,
    ExecutionMethod,
    SessionState,
    WarningKind,
    RouteRequest,
    TransferRequest,
    Quote,
    RouteWarning,
    RankedRouteSet,
    ValidationVerdict,
    SwapQuote,
    PendingTransfer,
    TransferSession,
    Receipt,
    HandleResult,
)
from .config import (
    RouterConfig,
    ProviderSettings,
    load_config,
)
from .providers import (
    ProviderAdapter,
    QuoteOutcome,
    build_default_adapters,
)
from .route_aggregator import (
    RouteAggregator,
    AggregationResult,
)
from .route_ranker import rank
from .guardrails import GuardrailValidator
from .execution_dispatcher import (
    ExecutionDispatcher,
    ExecutionFailure,
    ExecutionStep,
    DryRunBroadcaster,
)
from .intent_parser import (
    TransferIntent,
    SwapAndTransferIntent,
    AlertIntent,
    QueryIntent,
    ClarificationNeeded,
    LocalIntentParser,
    FallbackIntentResolver,
)
from .alert_monitor import (
    AlertCondition,
    AlertConditionKind,
    AlertAction,
    AlertMonitor,
    InMemoryAlertStore,
    StandingAlert,
    TriggerEvent,
)
from .transfer_state_machine import (
    TransferStateMachine,
    UserMessage,
    ConfirmationReply,
)
from .session_store import InMemorySessionStore
from .transaction_history import (
    TransactionHistoryDB,
    TransferRecord,
)
from .transfer_agent import TransferAgent

__all__ = [
    # Errors
    'FailureKind',
    'TransferAgentError',
    'ProviderUnavailable',
    'NetworkError',
    'ExecutionStepFailed',
    'ConfigurationError',

    # Data model
    'OptimizationPolicy',
    'ExecutionMethod',
    'SessionState',
    'WarningKind',
    'RouteRequest',
    'TransferRequest',
    'Quote',
    'RouteWarning',
    'RankedRouteSet',
    'ValidationVerdict',
    'SwapQuote',
    'PendingTransfer',
    'TransferSession',
    'Receipt',
    'HandleResult',

    # Configuration
    'RouterConfig',
    'ProviderSettings',
    'load_config',

    # Routing
    'ProviderAdapter',
    'QuoteOutcome',
    'build_default_adapters',
    'RouteAggregator',
    'AggregationResult',
    'rank',

    # Validation and execution
    'GuardrailValidator',
    'ExecutionDispatcher',
    'ExecutionFailure',
    'ExecutionStep',
    'DryRunBroadcaster',

    # Intents
    'TransferIntent',
    'SwapAndTransferIntent',
    'AlertIntent',
    'QueryIntent',
    'ClarificationNeeded',
    'LocalIntentParser',
    'FallbackIntentResolver',

    # Alerts
    'AlertCondition',
    'AlertConditionKind',
    'AlertAction',
    'AlertMonitor',
    'InMemoryAlertStore',
    'StandingAlert',
    'TriggerEvent',

    # Lifecycle
    'TransferStateMachine',
    'UserMessage',
    'ConfirmationReply',
    'InMemorySessionStore',
    'TransactionHistoryDB',
    'TransferRecord',
    'TransferAgent',
]

__version__ = '1.0.0'
__description__ = 'Cross-chain stablecoin transfers with route ranking and guardrails'
