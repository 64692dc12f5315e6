"""
Guardrail Validator

Safety checks that run before any transfer can reach confirmation.

Checks (all of them run, none short-circuit):
1. Destination address format for the detected network family
2. Asset support on the destination network
3. Amount floor and soft cap
4. Route quality: presence, fee ratio, liquidity, success rate
5. Single-network assets requested cross-network
6. Self-transfer on the same network

Pure: no I/O, no logging, same input gives the same verdict.
"""

from typing import List, Optional

from .config import RouterConfig
from .models import Quote, TransferRequest, ValidationVerdict
from .networks import (
    ASSET_SUPPORT,
    RESTRICTED_ASSETS,
    detect_network,
    get_network,
    validate_address,
)


class GuardrailValidator:
    """
    Pre-flight transfer validation

    Thresholds come from RouterConfig:
    - min_transfer_usd: below this the fee would eat the transfer
    - max_single_tx_usd: soft cap, warning only
    - high_fee_percent: fee as % of amount
    - low_liquidity_ratio: liquidity must cover this multiple of the amount
    - min_success_rate: warn below this historical success rate
    """

    def __init__(self, config: Optional[RouterConfig] = None):
        self.config = config or RouterConfig()

    def validate(self, request: TransferRequest, quote: Optional[Quote]) -> ValidationVerdict:
        """
        Run every check against a transfer and its chosen quote

        Args:
            request: The transfer as the user asked for it
            quote: Best quote, or None if no route was found

        Returns:
            ValidationVerdict (valid if and only if no errors)
        """
        errors: List[str] = []
        warnings: List[str] = []
        suggestions: List[str] = []

        route = request.route
        address = request.destination_address or ""
        asset = route.asset
        amount = route.amount
        requested = (route.destination_network or "").lower() or None

        # 1. Address format
        hint = " ".join(filter(None, [request.context_hint, requested]))
        detection = detect_network(address, hint)
        network = requested or (detection.network if detection.known else None)

        if not detection.known:
            errors.append(f"Cannot identify destination network for address: {address[:10]}...")
            suggestions.append("Make sure you copied the full destination address correctly.")
        elif detection.unsupported:
            errors.append(detection.note)
        else:
            requested_info = get_network(requested)
            if requested_info is not None and requested_info.family != detection.family:
                errors.append(
                    f"Address looks like a {detection.family.upper()} address but the destination "
                    f"is {requested} ({requested_info.family.upper()})."
                )
                suggestions.append(f"Double-check that this address belongs to a {requested} wallet.")
            else:
                ok, reason = validate_address(address, network)
                if not ok:
                    errors.append(f"Address validation failed: {reason}")

        # 2. Asset support
        support = ASSET_SUPPORT.get(network or "")
        if support is None:
            warnings.append(f"Asset support data unavailable for {network or 'unknown network'}. "
                            f"Proceeding with caution.")
        elif not support.get(asset, False):
            errors.append(f"{asset} is not natively supported on {network}.")
            supported = [a for a, ok in support.items() if ok]
            if supported:
                suggestions.append(f"On {network}, you can use: {', '.join(supported)}. Consider swapping first.")

        # 3. Amount
        if amount is None or amount <= 0:
            errors.append("Transfer amount must be greater than 0.")
        elif amount < self.config.min_transfer_usd:
            errors.append(f"Minimum transfer is ${self.config.min_transfer_usd:g}. "
                          f"Fees alone would exceed the transfer amount.")
        if amount and amount > self.config.max_single_tx_usd:
            warnings.append(f"Large transfer: ${amount:,.2f}. "
                            f"Consider splitting into smaller amounts to reduce risk.")

        # 4. Route quality
        if quote is None:
            errors.append(f"No route found for {asset} from {route.source_network} to {network}.")
            suggestions.append("Try a different asset (e.g. USDC instead of USDT) or a different destination network.")
        elif amount and amount > 0:
            fee_percent = quote.fee_usd / amount * 100
            if fee_percent > self.config.high_fee_percent:
                warnings.append(f"Route fee is {fee_percent:.1f}% (${quote.fee_usd:.2f}). This is unusually high.")
                suggestions.append("Consider waiting for lower network congestion, or try a different provider.")
            if quote.liquidity_usd < amount * self.config.low_liquidity_ratio:
                warnings.append(f"Low liquidity on {quote.provider_id}: only ${quote.liquidity_usd:,.0f} available. "
                                f"Transfer of ${amount:g} may fail or be delayed.")
                suggestions.append("Try a different provider or split the transfer into smaller amounts.")
            if quote.success_rate < self.config.min_success_rate:
                warnings.append(f"{quote.provider_id} has a {quote.success_rate:.0%} success rate. "
                                f"Consider an alternative provider.")

        # 5. Single-network assets
        home = RESTRICTED_ASSETS.get(asset)
        if home is not None and (network != home or route.source_network != home):
            errors.append(f"{asset} is only available on {home}.")
            suggestions.append(f"Swap {asset} to USDC on {home} first, then transfer. "
                               f"Say: 'Swap my {asset} to USDC and send to [address]'")

        # 6. Self-transfer
        source_address = (request.source_address or "").lower()
        if source_address and source_address == address.lower() and route.source_network == network:
            warnings.append("Source and destination appear to be the same address on the same network.")
            suggestions.append("This transfer will cost fees but return to the same wallet.")

        return ValidationVerdict(
            errors=tuple(errors),
            warnings=tuple(warnings),
            suggestions=tuple(suggestions),
        )
