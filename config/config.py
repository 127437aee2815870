import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

LINK_SCOPES = ("transfer", "cloud")
MIN_RANGE_BITS = 8
MAX_RANGE_BITS = 72


@dataclass
class RingConfig:
    link_scope: str = "transfer"
    reject_duplicate_members: bool = True
    max_proof_bytes: int = 4096
    max_public_input_bytes: int = 1024

    def __post_init__(self):
        if self.link_scope not in LINK_SCOPES:
            raise ValueError(
                f"link_scope must be one of {LINK_SCOPES}, got {self.link_scope!r}")
        if self.max_proof_bytes <= 0:
            raise ValueError("max_proof_bytes must be positive")
        if self.max_public_input_bytes <= 0:
            raise ValueError("max_public_input_bytes must be positive")


@dataclass
class HoldingsConfig:
    # 72 bits covers the sum of twenty u64 balances
    range_bits: int = 72
    max_proof_bytes: int = 16384

    def __post_init__(self):
        if not MIN_RANGE_BITS <= self.range_bits <= MAX_RANGE_BITS:
            raise ValueError(
                f"range_bits must be within [{MIN_RANGE_BITS}, {MAX_RANGE_BITS}]")
        if self.max_proof_bytes <= 0:
            raise ValueError("max_proof_bytes must be positive")


@dataclass
class LedgerConfig:
    program_label: str = "ring-wallet"
    demo_funding_lamports: int = 5_000_000_000

    def program_id(self) -> bytes:
        """32-byte program identifier every deterministic address is derived from"""
        return hashlib.sha256(self.program_label.encode()).digest()


@dataclass
class SystemConfig:
    ring_config: RingConfig = field(default_factory=RingConfig)
    holdings_config: HoldingsConfig = field(default_factory=HoldingsConfig)
    ledger_config: LedgerConfig = field(default_factory=LedgerConfig)

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    results_dir: Path = field(default_factory=lambda: Path("results"))
    enable_benchmarking: bool = True
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.results_dir.mkdir(parents=True, exist_ok=True)


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    if not config_path.exists():
        return SystemConfig()

    try:
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not load config file {config_path}: {e}")
        logger.warning("Using default configuration")
        return SystemConfig()

    ring_data = config_data.get('ring_signatures', {})
    ring_config = RingConfig(
        link_scope=ring_data.get('link_scope', 'transfer'),
        reject_duplicate_members=ring_data.get(
            'reject_duplicate_members', True),
        max_proof_bytes=ring_data.get('max_proof_bytes', 4096),
        max_public_input_bytes=ring_data.get('max_public_input_bytes', 1024)
    )

    holdings_data = config_data.get('holdings_proofs', {})
    holdings_config = HoldingsConfig(
        range_bits=holdings_data.get('range_bits', 72),
        max_proof_bytes=holdings_data.get('max_proof_bytes', 16384)
    )

    ledger_data = config_data.get('ledger', {})
    ledger_config = LedgerConfig(
        program_label=ledger_data.get('program_label', 'ring-wallet'),
        demo_funding_lamports=ledger_data.get(
            'demo_funding_lamports', 5_000_000_000)
    )

    return SystemConfig(
        ring_config=ring_config,
        holdings_config=holdings_config,
        ledger_config=ledger_config,
        log_dir=Path(config_data.get('log_dir', 'logs')),
        results_dir=Path(config_data.get('results_dir', 'results')),
        enable_benchmarking=config_data.get('enable_benchmarking', True),
        enable_debug_mode=config_data.get('enable_debug_mode', False)
    )


def save_config(config: SystemConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = Path("config.yaml")

    config_data = {
        'ring_signatures': {
            'link_scope': config.ring_config.link_scope,
            'reject_duplicate_members': config.ring_config.reject_duplicate_members,
            'max_proof_bytes': config.ring_config.max_proof_bytes,
            'max_public_input_bytes': config.ring_config.max_public_input_bytes
        },
        'holdings_proofs': {
            'range_bits': config.holdings_config.range_bits,
            'max_proof_bytes': config.holdings_config.max_proof_bytes
        },
        'ledger': {
            'program_label': config.ledger_config.program_label,
            'demo_funding_lamports': config.ledger_config.demo_funding_lamports
        },
        'log_dir': str(config.log_dir),
        'results_dir': str(config.results_dir),
        'enable_benchmarking': config.enable_benchmarking,
        'enable_debug_mode': config.enable_debug_mode
    }

    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False)
