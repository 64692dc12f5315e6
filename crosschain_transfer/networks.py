"""
Network Registry

Static knowledge about the networks the agent can route between:
- Per-protocol network identifiers (EVM, Wormhole, Axelar, LayerZero, Across)
- Address formats and network-family detection from an address
- Asset support matrix and single-network assets
- Token decimals and explorer links
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class NetworkInfo:
    """Identifiers for one network across bridge protocols"""
    name: str
    family: str  # 'evm', 'solana', 'tron', 'bitcoin', 'near', 'cosmos'
    native_asset: str
    evm_chain_id: Optional[int] = None
    wormhole_id: Optional[int] = None
    axelar_name: Optional[str] = None
    layerzero_id: Optional[int] = None
    across_id: Optional[int] = None
    explorer_tx_url: Optional[str] = None


NETWORKS: Dict[str, NetworkInfo] = {
    'ethereum': NetworkInfo('ethereum', 'evm', 'ETH', 1, 2, 'ethereum', 101, 1, 'https://etherscan.io/tx/{}'),
    'base': NetworkInfo('base', 'evm', 'ETH', 8453, 30, 'base', 184, 8453, 'https://basescan.org/tx/{}'),
    'celo': NetworkInfo('celo', 'evm', 'CELO', 42220, 14, 'celo', 125, None, 'https://celoscan.io/tx/{}'),
    'polygon': NetworkInfo('polygon', 'evm', 'MATIC', 137, 5, 'polygon', 109, 137, 'https://polygonscan.com/tx/{}'),
    'arbitrum': NetworkInfo('arbitrum', 'evm', 'ETH', 42161, 23, 'arbitrum', 110, 42161, 'https://arbiscan.io/tx/{}'),
    'optimism': NetworkInfo('optimism', 'evm', 'ETH', 10, 24, 'optimism', 111, 10, 'https://optimistic.etherscan.io/tx/{}'),
    'bnb': NetworkInfo('bnb', 'evm', 'BNB', 56, 4, 'binance', 102, None, 'https://bscscan.com/tx/{}'),
    'avalanche': NetworkInfo('avalanche', 'evm', 'AVAX', 43114, 6, 'avalanche', 106, None, 'https://snowtrace.io/tx/{}'),
    'solana': NetworkInfo('solana', 'solana', 'SOL', wormhole_id=1, explorer_tx_url='https://solscan.io/tx/{}'),
    'tron': NetworkInfo('tron', 'tron', 'TRX', explorer_tx_url='https://tronscan.org/#/transaction/{}'),
    'near': NetworkInfo('near', 'near', 'NEAR', explorer_tx_url='https://nearblocks.io/txns/{}'),
}

EVM_NETWORKS = [name for name, info in NETWORKS.items() if info.family == 'evm']

# Keyword -> network, checked in order against free text
NETWORK_ALIASES: List[Tuple[str, str]] = [
    ('base', 'base'),
    ('celo', 'celo'),
    ('polygon', 'polygon'),
    ('matic', 'polygon'),
    ('arbitrum', 'arbitrum'),
    ('optimism', 'optimism'),
    ('avalanche', 'avalanche'),
    ('avax', 'avalanche'),
    ('bnb', 'bnb'),
    ('bsc', 'bnb'),
    ('solana', 'solana'),
    ('tron', 'tron'),
    ('ethereum', 'ethereum'),
]

ADDRESS_PATTERNS = {
    'evm': re.compile(r'^0x[a-fA-F0-9]{40}$'),
    'solana': re.compile(r'^[1-9A-HJ-NP-Za-km-z]{32,44}$'),
    'bitcoin': re.compile(r'^(1[a-zA-Z0-9]{25,33}|3[a-zA-Z0-9]{25,33}|bc1[a-zA-Z0-9]{25,90})$'),
    'tron': re.compile(r'^T[a-zA-Z0-9]{33}$'),
    'near': re.compile(r'^[a-z0-9_-]{2,64}\.(near|testnet)$|^[a-f0-9]{64}$'),
    'cosmos': re.compile(r'^(cosmos|osmo)[a-z0-9]{38,39}$'),
}

# (network, asset) -> natively supported
ASSET_SUPPORT: Dict[str, Dict[str, bool]] = {
    'solana': {'USDC': True, 'USDT': True, 'USDm': False, 'CELO': False},
    'base': {'USDC': True, 'USDT': True, 'USDm': False, 'CELO': False},
    'ethereum': {'USDC': True, 'USDT': True, 'USDm': False, 'CELO': False},
    'polygon': {'USDC': True, 'USDT': True, 'USDm': False, 'CELO': False},
    'arbitrum': {'USDC': True, 'USDT': True, 'USDm': False, 'CELO': False},
    'celo': {'USDC': True, 'USDT': True, 'USDm': True, 'CELO': True},
    'optimism': {'USDC': True, 'USDT': True, 'USDm': False, 'CELO': False},
    'bnb': {'USDC': True, 'USDT': True, 'USDm': False, 'CELO': False},
    'tron': {'USDC': False, 'USDT': True, 'USDm': False, 'CELO': False},
}

# Assets that only exist on a single network
RESTRICTED_ASSETS: Dict[str, str] = {
    'USDm': 'celo',
}

ASSET_DECIMALS: Dict[str, int] = {
    'USDC': 6,
    'USDT': 6,
    'USDm': 18,
    'CELO': 18,
    'ETH': 18,
}

STABLE_ASSETS = {'USDC', 'USDT', 'USDm', 'cUSD', 'DAI'}


@dataclass(frozen=True)
class NetworkDetection:
    """Result of identifying a network from an address"""
    network: str  # 'unknown' when nothing matched
    family: Optional[str]
    confidence: str  # 'high', 'medium', 'low'
    note: str = ""
    unsupported: bool = False

    @property
    def known(self) -> bool:
        return self.network != 'unknown'


def get_network(name: Optional[str]) -> Optional[NetworkInfo]:
    if not name:
        return None
    return NETWORKS.get(name.lower())


def network_from_text(text: str) -> Optional[str]:
    """Find the first network keyword mentioned in free text"""
    lowered = (text or "").lower()
    for keyword, network in NETWORK_ALIASES:
        if re.search(rf'\b{keyword}\b', lowered):
            return network
    return None


def detect_network(address: str, context_hint: str = "") -> NetworkDetection:
    """
    Identify the network an address belongs to

    EVM addresses are shared by every EVM network, so the context hint
    (e.g. "send to my Base wallet") narrows them down. Without a hint
    Ethereum is assumed with medium confidence.

    Args:
        address: Wallet address
        context_hint: Free text that may name the network

    Returns:
        NetworkDetection
    """
    addr = (address or "").strip()

    if ADDRESS_PATTERNS['evm'].match(addr):
        hinted = network_from_text(context_hint)
        if hinted and hinted in EVM_NETWORKS:
            return NetworkDetection(hinted, 'evm', 'high', f"{hinted} detected from context")
        return NetworkDetection(
            'ethereum', 'evm', 'medium',
            "EVM address detected. Defaulting to Ethereum, confirm if this is a different EVM network."
        )

    if ADDRESS_PATTERNS['tron'].match(addr):
        return NetworkDetection('tron', 'tron', 'high', "TRON address detected")

    if ADDRESS_PATTERNS['bitcoin'].match(addr):
        return NetworkDetection(
            'bitcoin', 'bitcoin', 'high',
            "Bitcoin address detected. Stablecoin bridging to Bitcoin is not supported.",
            unsupported=True
        )

    if ADDRESS_PATTERNS['solana'].match(addr):
        return NetworkDetection('solana', 'solana', 'high', "Solana address detected (Base58 format)")

    if ADDRESS_PATTERNS['near'].match(addr):
        return NetworkDetection('near', 'near', 'high', "NEAR address detected")

    if ADDRESS_PATTERNS['cosmos'].match(addr):
        return NetworkDetection(
            'cosmos', 'cosmos', 'high', "Cosmos address detected. Cosmos routes are not supported.",
            unsupported=True
        )

    return NetworkDetection(
        'unknown', None, 'low',
        "Could not identify network from address format. Please specify the destination network."
    )


def validate_address(address: str, network: str) -> Tuple[bool, Optional[str]]:
    """
    Validate an address for a specific network

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not address:
        return False, "Address is empty"

    info = get_network(network)
    if info is None:
        return False, f"Network '{network}' is not currently supported"

    pattern = ADDRESS_PATTERNS.get(info.family)
    if pattern is None or not pattern.match(address.strip()):
        return False, f"Invalid {info.family.upper()} address for {network}"

    return True, None


def supported_assets(network: str) -> List[str]:
    return [asset for asset, ok in ASSET_SUPPORT.get(network, {}).items() if ok]


def to_base_units(amount: float, asset: str) -> int:
    """Convert a token amount to integer base units"""
    decimals = ASSET_DECIMALS.get(asset, 18)
    return int(round(amount * (10 ** decimals)))


def explorer_link(network: str, tx_reference: str) -> str:
    info = get_network(network)
    if info and info.explorer_tx_url:
        return info.explorer_tx_url.format(tx_reference)
    return f"https://blockscan.com/tx/{tx_reference}"
