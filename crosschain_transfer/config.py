"""
Router Configuration

Thresholds, endpoints and contract data for the transfer agent.

Defaults live on the dataclass; a YAML file overrides any of them and
environment variables (loaded from .env) override the YAML.

Environment overrides:
- RPC_<NETWORK>          e.g. RPC_CELO=https://...
- AGENT_WALLET_ADDRESS
- HOME_NETWORK
- PRICE_EXCHANGE
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger

from .errors import ConfigurationError
from .models import ExecutionMethod


DEFAULT_BRIDGE_ENDPOINTS = {
    'across': 'https://across.to/api',
    'wormhole': 'https://api.wormholescan.io',
    'axelar': 'https://axelarapi.axelar.dev',
    'celer': 'https://cbridge-prod2.celer.app',
}

DEFAULT_RPC_URLS = {
    'celo': 'https://forno.celo.org',
    'ethereum': 'https://eth.llamarpc.com',
    'base': 'https://mainnet.base.org',
    'polygon': 'https://polygon-rpc.com',
    'arbitrum': 'https://arb1.arbitrum.io/rpc',
    'optimism': 'https://mainnet.optimism.io',
    'bnb': 'https://bsc-dataseed.binance.org',
}

DEFAULT_TOKEN_ADDRESSES = {
    'celo': {
        'USDC': '0xcebA9300f2b948710d2653dD7B07f33A8B32118C',
        'USDT': '0x48065fbBE25f71C9282ddf5e1cD6D6A887483D5e',
        'USDm': '0x765DE816845861e75A25fCA122bb6898B8B1282a',
        'CELO': '0x471EcE3750Da237f93B8E339c536989b8978a438',
    },
    'ethereum': {
        'USDC': '0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48',
        'USDT': '0xdAC17F958D2ee523a2206206994597C13D831ec7',
    },
    'base': {
        'USDC': '0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913',
    },
    'polygon': {
        'USDC': '0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359',
        'USDT': '0xc2132D05D31c914a87C6611C10748AEb04B58e8F',
    },
    'arbitrum': {
        'USDC': '0xaf88d065e77c8cC2239327C5EDb3A432268e5831',
        'USDT': '0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9',
    },
    'optimism': {
        'USDC': '0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85',
        'USDT': '0x94b008aA00579c1307B0EF2c499aD98a8ce58e58',
    },
}

# execution method -> network -> contract that receives the spend authorization
DEFAULT_SPENDER_CONTRACTS = {
    ExecutionMethod.ACROSS_RELAY.value: {
        'ethereum': '0x5c7BCd6E7De5423a257D81B442095A1a6ced35C5',
        'base': '0x09aea4b2242abC8bb4BB78D537A67a245A7bEC64',
        'polygon': '0x9295ee1d8C5b022Be115A2AD3c30C72E34e7F096',
        'arbitrum': '0xe35e9842fceaCA96570B734083f4a58e8F7C5f2A',
        'optimism': '0x6f26Bf09B1C792e3228e5467807a900A503c0281',
    },
    ExecutionMethod.AXELAR_GMP.value: {
        'celo': '0xe432150cce91c13a887f7D836923d5597adD8E31',
    },
    ExecutionMethod.CELER_CBRIDGE.value: {
        'celo': '0xBB7684Cc5408F4DD0921E5c2Cadd547b8f1AD573',
        'ethereum': '0x5427FEFA711Eff984124bFBB1AB6fbf5E3DA1820',
    },
    ExecutionMethod.LAYERZERO_STARGATE.value: {
        'celo': '0x45A01E4e04F14f7A4a6702c74187c5F6222033cd',
        'ethereum': '0x8731d54E9D02c286767d56ac03e8037C07e01e98',
        'base': '0x45f1A95A4D3f3836523F5c83673c797f4d4d263B',
        'arbitrum': '0x53Bf833A5d6c4ddA888F69c22C88C9f356a41614',
        'optimism': '0xB0D502E938ed5f4df2E681fE6E419ff29631d62b',
    },
}


@dataclass
class ProviderSettings:
    """Per-provider switches"""
    enabled: bool = True
    execution_ready: bool = True


def _default_providers() -> Dict[str, ProviderSettings]:
    return {
        'across': ProviderSettings(enabled=True, execution_ready=False),
        'wormhole': ProviderSettings(),
        'axelar': ProviderSettings(),
        'celer': ProviderSettings(),
        'layerzero': ProviderSettings(),
    }


@dataclass
class RouterConfig:
    """
    Complete agent configuration

    Thresholds mirror the guardrail and hard-stop rules; endpoint and
    contract tables feed the providers and the dispatcher.
    """
    home_network: str = 'celo'
    provider_timeout_seconds: float = 10.0
    aggregation_timeout_seconds: float = 15.0
    alert_interval_seconds: float = 60.0
    min_transfer_usd: float = 1.0
    max_single_tx_usd: float = 50_000.0
    high_fee_percent: float = 5.0
    low_liquidity_ratio: float = 2.0
    min_success_rate: float = 0.95
    hard_stop_fee_ratio: float = 0.25
    confirmation_ttl_seconds: Optional[float] = 900.0
    agent_wallet_address: Optional[str] = None
    price_exchange: str = 'binance'
    price_cache_seconds: float = 30.0
    history_db_path: Optional[str] = None
    bridge_endpoints: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_BRIDGE_ENDPOINTS))
    rpc_urls: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_RPC_URLS))
    token_addresses: Dict[str, Dict[str, str]] = field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_TOKEN_ADDRESSES.items()}
    )
    spender_contracts: Dict[str, Dict[str, str]] = field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_SPENDER_CONTRACTS.items()}
    )
    providers: Dict[str, ProviderSettings] = field(default_factory=_default_providers)

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Raise ConfigurationError on values that make no sense"""
        positive = [
            'provider_timeout_seconds', 'aggregation_timeout_seconds',
            'alert_interval_seconds', 'low_liquidity_ratio', 'max_single_tx_usd',
        ]
        for name in positive:
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive number", {name: value})

        if self.min_transfer_usd < 0:
            raise ConfigurationError("min_transfer_usd must not be negative",
                                     {'min_transfer_usd': self.min_transfer_usd})
        if not 0 <= self.min_success_rate <= 1:
            raise ConfigurationError("min_success_rate must be within [0, 1]",
                                     {'min_success_rate': self.min_success_rate})
        if not 0 < self.hard_stop_fee_ratio <= 1:
            raise ConfigurationError("hard_stop_fee_ratio must be within (0, 1]",
                                     {'hard_stop_fee_ratio': self.hard_stop_fee_ratio})
        if self.high_fee_percent <= 0:
            raise ConfigurationError("high_fee_percent must be positive",
                                     {'high_fee_percent': self.high_fee_percent})
        if self.confirmation_ttl_seconds is not None and self.confirmation_ttl_seconds <= 0:
            raise ConfigurationError("confirmation_ttl_seconds must be positive or null",
                                     {'confirmation_ttl_seconds': self.confirmation_ttl_seconds})

    def provider_settings(self, provider_id: str) -> ProviderSettings:
        return self.providers.get(provider_id, ProviderSettings())

    def token_address(self, network: str, asset: str) -> Optional[str]:
        return self.token_addresses.get(network, {}).get(asset)

    def spender_for(self, method: ExecutionMethod, network: str) -> Optional[str]:
        return self.spender_contracts.get(ExecutionMethod(method).value, {}).get(network)

    def to_dict(self) -> Dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data['providers'] = {
            name: {'enabled': s.enabled, 'execution_ready': s.execution_ready}
            for name, s in self.providers.items()
        }
        return data


def _merge_tables(defaults: Dict, overrides: Optional[Dict]) -> Dict:
    """Two-level merge of network/asset style tables"""
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in defaults.items()}
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def _build_config(raw: Dict) -> RouterConfig:
    base = RouterConfig()
    known = {f.name for f in fields(RouterConfig)}

    unknown = set(raw) - known
    if unknown:
        logger.warning(f"⚠️ Ignoring unknown config keys: {sorted(unknown)}")

    kwargs = {}
    for name in known:
        if name not in raw:
            continue
        value = raw[name]
        if name in ('bridge_endpoints', 'rpc_urls'):
            kwargs[name] = {**getattr(base, name), **(value or {})}
        elif name in ('token_addresses', 'spender_contracts'):
            kwargs[name] = _merge_tables(getattr(base, name), value)
        elif name == 'providers':
            providers = _default_providers()
            for provider_id, settings in (value or {}).items():
                current = providers.get(provider_id, ProviderSettings())
                settings = settings or {}
                providers[provider_id] = ProviderSettings(
                    enabled=bool(settings.get('enabled', current.enabled)),
                    execution_ready=bool(settings.get('execution_ready', current.execution_ready)),
                )
            kwargs[name] = providers
        else:
            kwargs[name] = value

    return RouterConfig(**kwargs)


def _apply_env_overrides(config: RouterConfig) -> RouterConfig:
    for key, value in os.environ.items():
        if key.startswith('RPC_') and value:
            network = key[len('RPC_'):].lower()
            config.rpc_urls[network] = value
            logger.debug(f"RPC override for {network} from environment")

    if os.getenv('AGENT_WALLET_ADDRESS'):
        config.agent_wallet_address = os.getenv('AGENT_WALLET_ADDRESS')
    if os.getenv('HOME_NETWORK'):
        config.home_network = os.getenv('HOME_NETWORK').lower()
    if os.getenv('PRICE_EXCHANGE'):
        config.price_exchange = os.getenv('PRICE_EXCHANGE').lower()

    return config


def load_config(config_path: Optional[str] = None, use_env: bool = True) -> RouterConfig:
    """
    Load configuration from YAML with environment overrides

    Args:
        config_path: Path to YAML config (optional)
        use_env: Apply .env / environment overrides

    Returns:
        RouterConfig

    Raises:
        ConfigurationError: If a value in the file is invalid
    """
    raw: Dict = {}

    if config_path:
        path = Path(config_path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw = yaml.safe_load(f) or {}
            if not isinstance(raw, dict):
                logger.warning(f"⚠️ Config {path} is not a mapping, using defaults")
                raw = {}
            else:
                logger.info(f"✓ Loaded config from {path}")
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"⚠️ Could not load config {path}: {e}. Using defaults")
            raw = {}

    try:
        config = _build_config(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}", {'path': config_path})

    if use_env:
        load_dotenv()
        config = _apply_env_overrides(config)

    return config
