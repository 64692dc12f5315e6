"""
Error Taxonomy

Typed exceptions and failure kinds for the cross-chain transfer agent.

Only a few failures are ever raised. Provider failures are absorbed by the
aggregator, validation and business-rule rejections travel as data, and
execution failures are converted into ExecutionFailure values by the
dispatcher before they reach the state machine.
"""

from enum import Enum
from typing import Dict, Optional


class FailureKind(str, Enum):
    """Failure categories reported to callers"""
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    NO_ROUTE_FOUND = "no_route_found"
    VALIDATION_FAILED = "validation_failed"
    HARD_STOP_FEE_RATIO = "hard_stop_fee_ratio"
    EXECUTION_STEP_FAILED = "execution_step_failed"
    CONFIGURATION_ERROR = "configuration_error"


class TransferAgentError(Exception):
    """
    Base exception for the transfer agent

    Carries an optional context dict that is appended to the message.
    """

    kind: FailureKind = FailureKind.CONFIGURATION_ERROR

    def __init__(self, message: str, context: Optional[Dict] = None):
        self.message = message
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            msg = f"{msg} | Context: {ctx_str}"
        return msg


class ProviderUnavailable(TransferAgentError):
    """A quoting provider failed, timed out or answered with garbage"""
    kind = FailureKind.PROVIDER_UNAVAILABLE


class NetworkError(TransferAgentError):
    """The broadcast capability could not submit a payload"""
    kind = FailureKind.EXECUTION_STEP_FAILED


class ExecutionStepFailed(TransferAgentError):
    """An ordered execution step failed"""
    kind = FailureKind.EXECUTION_STEP_FAILED

    def __init__(self, step: str, provider_id: str, provider_error: str):
        self.step = step
        self.provider_id = provider_id
        self.provider_error = provider_error
        super().__init__(
            f"{step} step failed on {provider_id}: {provider_error}",
            {'step': step, 'provider': provider_id}
        )


class ConfigurationError(TransferAgentError):
    """
    Unrecognized execution method, missing contract/token data or invalid config

    Fatal to the single operation that hit it, never to the process.
    """
    kind = FailureKind.CONFIGURATION_ERROR
