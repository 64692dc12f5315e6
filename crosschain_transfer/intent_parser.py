"""
Intent Parsing

Turns a user message into a structured intent.

Intent types:
- TransferIntent: send an amount of an asset to an address
- SwapAndTransferIntent: swap on the source network, then send
- AlertIntent: watch a condition, notify or auto-execute
- QueryIntent: fee check, price check, list alerts
- ClarificationNeeded: something essential is missing

Any IntentResolver can be plugged in (e.g. a hosted language model);
FallbackIntentResolver degrades to the deterministic LocalIntentParser
whenever the primary resolver fails.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol, Tuple, Union

from loguru import logger

from .models import OptimizationPolicy
from .networks import NETWORKS, network_from_text


YES_WORDS = frozenset({"yes", "y", "confirm", "ok", "sure", "proceed", "execute", "go"})
NO_WORDS = frozenset({"no", "n", "cancel", "stop", "abort", "nevermind"})
FILLER_WORDS = frozenset({"please", "pls", "it", "do", "that", "thanks", "now", "ahead", "yeah"})

ASSET_KEYWORDS = [
    ('usdm', 'USDm'),
    ('usdt', 'USDT'),
    ('usdc', 'USDC'),
    ('celo', 'CELO'),
    ('eth', 'ETH'),
]

ADDRESS_FINDERS = [
    re.compile(r'\b0x[a-fA-F0-9]{40}\b'),
    re.compile(r'\bT[1-9A-HJ-NP-Za-km-z]{33}\b'),
    re.compile(r'\b[1-9A-HJ-NP-Za-km-z]{32,44}\b'),
]

# 1,000 | 1,000.50 | .5 | 100.25 | 100
NUMBER = r'(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d*\.\d+|\d+)'

AMOUNT_PATTERN = re.compile(r'\$?' + NUMBER + r'\s*(usdt|usdc|usdm|celo|eth)?\b', re.IGNORECASE)
THRESHOLD_PATTERN = re.compile(r'(?:below|under|above|over|less than|more than|drops? to|<|>)\s*\$?' + NUMBER)
SWAP_PATTERN = re.compile(
    r'swap\s+(?:my\s+)?(?:' + NUMBER + r'\s+)?(usdm|usdt|usdc|celo)\s+(?:to|for|into)\s+(usdm|usdt|usdc|celo)',
    re.IGNORECASE
)
SOURCE_PATTERN = re.compile(r'\bfrom\s+([a-z]+)\b')


@dataclass(frozen=True)
class TransferIntent:
    destination_address: str
    asset: str
    amount: float
    destination_network: Optional[str] = None
    source_network: Optional[str] = None
    policy: OptimizationPolicy = OptimizationPolicy.CHEAPEST
    source_address: Optional[str] = None
    raw_text: str = ""


@dataclass(frozen=True)
class SwapAndTransferIntent:
    from_asset: str
    to_asset: str
    amount: float
    destination_address: str
    destination_network: Optional[str] = None
    source_network: Optional[str] = None
    policy: OptimizationPolicy = OptimizationPolicy.CHEAPEST
    raw_text: str = ""


@dataclass(frozen=True)
class AlertIntent:
    condition: str  # 'fee_below', 'price_below', 'price_above', 'gas_below'
    threshold: float
    asset: str = 'USDC'
    destination_network: Optional[str] = None
    action: str = 'notify'  # 'notify' or 'auto_execute'
    transfer: Optional[TransferIntent] = None
    raw_text: str = ""


@dataclass(frozen=True)
class QueryIntent:
    query_type: str  # 'fee_check', 'price_check', 'alerts', 'help'
    asset: str = 'USDC'
    network: Optional[str] = None


@dataclass(frozen=True)
class ClarificationNeeded:
    missing_fields: Tuple[str, ...] = ()
    partial: Dict = field(default_factory=dict, compare=False)


Intent = Union[TransferIntent, SwapAndTransferIntent, AlertIntent, QueryIntent, ClarificationNeeded]


@dataclass
class ParseContext:
    """What the resolver may know beyond the message itself"""
    connected_wallet: Optional[str] = None
    history_text: str = ""
    home_network: str = 'celo'


class IntentResolver(Protocol):
    async def parse(self, text: str, context: ParseContext) -> Intent:
        ...


def _tokens(text: str):
    return re.findall(r"[a-z]+", (text or "").lower())


def classify_confirmation(text: str) -> Optional[bool]:
    """
    Classify a confirmation reply

    Whole words only, so "no" inside "know" does not count.

    Returns:
        True for yes, False for no, None when absent or ambiguous
    """
    words = set(_tokens(text))
    yes = bool(words & YES_WORDS)
    no = bool(words & NO_WORDS)
    if yes == no:
        return None
    return yes


def is_bare_reply(text: str) -> bool:
    """True when the message is nothing but a yes/no style reply"""
    words = _tokens(text)
    if not words or re.search(r'\d', text or ""):
        return False
    vocabulary = YES_WORDS | NO_WORDS | FILLER_WORDS
    return all(w in vocabulary for w in words) and classify_confirmation(text) is not None


def find_address(text: str) -> Optional[str]:
    for pattern in ADDRESS_FINDERS:
        match = pattern.search(text or "")
        if match:
            return match.group(0)
    return None


def extract_asset(text: str) -> Optional[str]:
    lowered = (text or "").lower()
    for keyword, asset in ASSET_KEYWORDS:
        if re.search(rf'\b{keyword}\b', lowered):
            return asset
    return None


def parse_number(text: str) -> float:
    return float(text.replace(',', ''))


def _strip_addresses(text: str) -> str:
    for pattern in ADDRESS_FINDERS:
        text = pattern.sub(' ', text)
    return text


def _extract_policy(lowered: str) -> OptimizationPolicy:
    if re.search(r'\b(fast|fastest|quick|quickly|asap)\b', lowered):
        return OptimizationPolicy.FASTEST
    if re.search(r'\b(safe|safest|reliable)\b', lowered):
        return OptimizationPolicy.SAFEST
    if re.search(r'\bbalanced?\b', lowered):
        return OptimizationPolicy.BALANCED
    return OptimizationPolicy.CHEAPEST


def _extract_networks(lowered: str) -> Tuple[Optional[str], Optional[str]]:
    """Return (source, destination) network names mentioned in text"""
    source = None
    match = SOURCE_PATTERN.search(lowered)
    if match and match.group(1) in NETWORKS:
        source = match.group(1)
        lowered = lowered[:match.start()] + lowered[match.end():]
    return source, network_from_text(lowered)


class LocalIntentParser:
    """
    Deterministic keyword and pattern parser

    Handles the common phrasings reliably without any external service:
    - "Send 100 USDC to 0xA1B2... on Base"
    - "Swap my 500 USDm to USDC and send to 7xKX..."
    - "Alert me when fees to Base drop below $0.50"
    - "How much does it cost to send USDT to Polygon?"
    """

    async def parse(self, text: str, context: Optional[ParseContext] = None) -> Intent:
        return self.parse_text(text, context or ParseContext())

    def parse_text(self, text: str, context: ParseContext) -> Intent:
        message = (text or "").strip()
        lowered = message.lower()
        address = find_address(message)
        without_addresses = _strip_addresses(message)
        source, destination = _extract_networks(without_addresses.lower())
        policy = _extract_policy(lowered)

        swap = SWAP_PATTERN.search(without_addresses)
        if swap:
            return self._swap_intent(swap, address, without_addresses, source, destination, policy, message)

        if re.search(r'\b(alert|notify|remind)\b', lowered) or re.search(r'\bwhen (fees?|price|gas)\b', lowered):
            if re.search(r'\b(my|list|show)\s+alerts?\b', lowered):
                return QueryIntent('alerts')
            return self._alert_intent(message, without_addresses, address, source, destination, policy, context)

        if re.search(r'\b(my|list|show)\s+alerts?\b', lowered):
            return QueryIntent('alerts')

        if re.search(r'\bprice\b', lowered) and not address:
            return QueryIntent('price_check', asset=extract_asset(lowered) or 'CELO', network=destination)

        if (re.search(r'\b(fees?|cost)\b', lowered) or 'how much' in lowered) and not address:
            return QueryIntent('fee_check', asset=extract_asset(lowered) or 'USDC', network=destination or 'base')

        amount, asset = self._amount_and_asset(without_addresses)

        if address and amount:
            return TransferIntent(
                destination_address=address,
                asset=asset,
                amount=amount,
                destination_network=destination,
                source_network=source,
                policy=policy,
                source_address=context.connected_wallet,
                raw_text=message,
            )
        if amount and not address:
            return ClarificationNeeded(('destination_address',),
                                       {'amount': amount, 'asset': asset, 'destination_network': destination})
        if address and not amount:
            return ClarificationNeeded(('amount',),
                                       {'destination_address': address, 'asset': asset,
                                        'destination_network': destination})
        return ClarificationNeeded(('amount', 'destination_address'), {})

    @staticmethod
    def _amount_and_asset(text: str) -> Tuple[Optional[float], str]:
        match = AMOUNT_PATTERN.search(text)
        amount = parse_number(match.group(1)) if match else None
        if match and match.group(2):
            asset = extract_asset(match.group(2))
        else:
            asset = extract_asset(text.replace('celo', ' ').replace('Celo', ' ')) or 'USDC'
        if amount is not None and amount <= 0:
            amount = None
        return amount, asset

    def _swap_intent(self, swap, address, text, source, destination, policy, message) -> Intent:
        amount = parse_number(swap.group(1)) if swap.group(1) else None
        if amount is None:
            amount, _ = self._amount_and_asset(text[swap.end():])
        from_asset = extract_asset(swap.group(2))
        to_asset = extract_asset(swap.group(3))

        missing = []
        if not amount:
            missing.append('amount')
        if not address:
            missing.append('destination_address')
        if missing:
            return ClarificationNeeded(tuple(missing), {'from_asset': from_asset, 'to_asset': to_asset})

        return SwapAndTransferIntent(
            from_asset=from_asset,
            to_asset=to_asset,
            amount=amount,
            destination_address=address,
            destination_network=destination,
            source_network=source,
            policy=policy,
            raw_text=message,
        )

    def _alert_intent(self, message, text, address, source, destination, policy, context) -> AlertIntent:
        lowered = text.lower()
        if re.search(r'\bgas\b', lowered):
            condition = 'gas_below'
        elif re.search(r'\bfees?\b', lowered):
            condition = 'fee_below'
        elif re.search(r'\b(above|over|exceeds?|rises?|more than)\b', lowered):
            condition = 'price_above'
        else:
            condition = 'price_below'

        match = THRESHOLD_PATTERN.search(lowered)
        if match is None:
            match = re.search(r'\$' + NUMBER, lowered)
        threshold = parse_number(match.group(1)) if match else 1.0

        transfer = None
        action = 'notify'
        if address and re.search(r'\b(send|transfer|bridge|move)\b', lowered):
            # Amount of the transfer is whatever number is not the threshold
            remainder = lowered[:match.start()] + lowered[match.end():] if match else lowered
            amount, asset = self._amount_and_asset(remainder)
            if amount:
                transfer = TransferIntent(
                    destination_address=address,
                    asset=asset,
                    amount=amount,
                    destination_network=destination,
                    source_network=source,
                    policy=policy,
                    source_address=context.connected_wallet,
                    raw_text=message,
                )
                action = 'auto_execute'

        if condition in ('price_below', 'price_above'):
            asset = extract_asset(lowered.replace('usd ', ' ')) or 'CELO'
        else:
            asset = transfer.asset if transfer else (extract_asset(lowered) or 'USDC')

        return AlertIntent(
            condition=condition,
            threshold=threshold,
            asset=asset,
            destination_network=destination or (None if condition.startswith('price') else 'base'),
            action=action,
            transfer=transfer,
            raw_text=message,
        )


class FallbackIntentResolver:
    """
    Wraps a primary resolver and falls back to the local parser

    Any exception or malformed result from the primary is logged and the
    message is parsed locally instead.
    """

    INTENT_TYPES = (TransferIntent, SwapAndTransferIntent, AlertIntent, QueryIntent, ClarificationNeeded)

    def __init__(self, primary: Optional[IntentResolver] = None, fallback: Optional[LocalIntentParser] = None):
        self.primary = primary
        self.fallback = fallback or LocalIntentParser()

    async def parse(self, text: str, context: Optional[ParseContext] = None) -> Intent:
        context = context or ParseContext()
        if self.primary is not None:
            try:
                intent = await self.primary.parse(text, context)
                if isinstance(intent, self.INTENT_TYPES):
                    return intent
                logger.warning(f"⚠️ Intent resolver returned {type(intent).__name__}, using local parser")
            except Exception as e:
                logger.warning(f"⚠️ Intent resolver failed ({e}), using local parser")
        return await self.fallback.parse(text, context)
