"""
Sender Configuration

Network and rate limiting settings for the ATOM sender.

Defaults target Cosmos Hub mainnet. Values can be overridden from a YAML
file (sender_config.yaml) and, for endpoints and log level, from environment
variables (.env is honoured). Settings are fixed once the run starts.
"""

import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Dict, Optional, Union, get_args, get_origin

import yaml
from dotenv import load_dotenv
from loguru import logger

from .errors import ConfigError


DEFAULT_CONFIG_FILE = "sender_config.yaml"

# Environment variable -> config field
ENV_OVERRIDES = {
    'ATOM_REST_ENDPOINT': 'rest_endpoint',
    'ATOM_RPC_ENDPOINT': 'rpc_endpoint',
    'ATOM_CHAIN_ID': 'chain_id',
    'ATOM_HISTORY_DB': 'history_db_path',
    'LOG_LEVEL': 'log_level',
}

# Field -> smallest accepted value
MINIMUMS = {
    'gas_limit': 1,
    'fee_amount': 0,
    'http_timeout_seconds': 0.001,
    'delay_between_transactions': 0,
    'max_retries': 1,
    'retry_delay_seconds': 0,
    'reserved_for_fees': 0,
    'confirmation_timeout_seconds': 0.001,
    'confirmation_interval_seconds': 0.001,
    'checkpoint_every': 1,
    'start_delay_seconds': 0,
}


def _coerce(f, value):
    """Convert a YAML or environment value to the type of a config field"""
    optional = get_origin(f.type) is Union and type(None) in get_args(f.type)
    if value is None:
        if optional:
            return None
        raise ConfigError(f"{f.name} must not be empty")

    target = get_args(f.type)[0] if optional else f.type
    if target is int and isinstance(value, float) and not value.is_integer():
        raise ConfigError(f"{f.name} must be a whole number, got {value!r}")
    if isinstance(value, bool) and target in (int, float):
        raise ConfigError(f"{f.name} must be a number, got {value!r}")
    try:
        return target(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{f.name} must be {target.__name__}, got {value!r}") from e


@dataclass(frozen=True)
class SenderConfig:
    """Configuration for one sender run"""

    # Network
    rest_endpoint: str = 'https://cosmos-api.polkachu.com'
    rpc_endpoint: str = 'https://cosmos-rpc.polkachu.com'
    chain_id: str = 'cosmoshub-4'
    prefix: str = 'cosmos'
    denom: str = 'uatom'
    gas_price: str = '0.025uatom'  # informational; the fee paid is the flat fee_amount
    gas_limit: int = 200000
    fee_amount: int = 5000  # flat fee attached to every transfer (uatom)
    http_timeout_seconds: float = 30.0

    # Rate limiting
    delay_between_transactions: float = 0.0
    max_retries: int = 3
    retry_delay_seconds: float = 5.0

    # Fees
    reserved_for_fees: int = 20000  # 0.02 ATOM kept in every source wallet

    # Confirmation
    confirmation_timeout_seconds: float = 120.0
    confirmation_interval_seconds: float = 5.0

    # Batch
    checkpoint_every: int = 5
    start_delay_seconds: float = 5.0
    history_db_path: Optional[str] = 'transfer_history.db'

    # Logging
    log_level: str = 'INFO'
    log_file: Optional[str] = None

    def __post_init__(self):
        for name, minimum in MINIMUMS.items():
            if getattr(self, name) < minimum:
                raise ConfigError(f"{name} must be at least {minimum:g}, got {getattr(self, name)!r}")

    @property
    def reserved_display(self) -> str:
        """Fee reserve in whole ATOM, for operator messages"""
        return f"{self.reserved_for_fees / 1_000_000:g} ATOM"

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> 'SenderConfig':
        """
        Build configuration from defaults, YAML file and environment

        Args:
            config_path: Path to YAML config (defaults to sender_config.yaml)

        Returns:
            SenderConfig
        """
        load_dotenv()

        values: Dict = {}
        known = {f.name: f for f in fields(cls)}

        config_file = Path(config_path or DEFAULT_CONFIG_FILE)
        if config_file.exists():
            try:
                with open(config_file, 'r', encoding='utf-8') as f:
                    data = yaml.safe_load(f) or {}

                for key, value in data.items():
                    if key in known:
                        values[key] = value
                    else:
                        logger.warning(f"Unknown config key '{key}' in {config_file}, ignoring")

                if values:
                    logger.info(f"Loaded config overrides from {config_file}: {sorted(values)}")

            except (yaml.YAMLError, OSError, AttributeError) as e:
                logger.warning(f"Failed to load config from {config_file}: {e}, using defaults")
                values = {}
        elif config_path:
            logger.warning(f"Config file {config_file} not found, using defaults")

        for env_name, field_name in ENV_OVERRIDES.items():
            env_value = os.getenv(env_name)
            if env_value:
                values[field_name] = env_value

        coerced = {name: _coerce(known[name], value) for name, value in values.items()}
        config = cls(**coerced)
        logger.debug(f"Configuration: {config.to_dict()}")
        return config
