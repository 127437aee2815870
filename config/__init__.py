"""Configuration management for the ring wallet."""

from .config import (
    SystemConfig,
    RingConfig,
    HoldingsConfig,
    LedgerConfig,
    load_config,
    save_config,
)

__all__ = ['SystemConfig', 'RingConfig', 'HoldingsConfig',
           'LedgerConfig', 'load_config', 'save_config']
