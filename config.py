"""
Configuration loaded from environment variables and `.env`. Validated on load.

The control-plane values at the bottom only seed the store on first start;
after that the stored control plane is authoritative and is changed through
the approval gate.
"""

from pydantic_settings import BaseSettings
from pydantic import Field

from scanner.models import SystemControl


class Config(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "frozen": True, "extra": "ignore"}

    # API endpoints
    gamma_host: str = "https://gamma-api.polymarket.com"
    clob_host: str = "https://clob.polymarket.com"
    polygon_rpc_url: str = "https://polygon-rpc.com"
    negrisk_adapter_address: str = "0xC5d563A36AE78145C45a50134d48A1215220f80a"
    chain_id: int = 137  # Polygon mainnet

    # Storage
    db_path: str = "data/negrisk.db"

    # Timing
    scan_interval_sec: float = Field(default=30.0, gt=0)
    # Self-imposed rate limit between orderbook fetches
    book_fetch_delay_sec: float = Field(default=0.2, ge=0)
    freshness_window_sec: float = Field(default=60.0, gt=0)
    http_timeout_sec: float = Field(default=10.0, gt=0)

    # Decision inputs
    price_band: float = Field(default=0.05, gt=0, le=0.5)
    confidence_floor: float = Field(default=0.6, ge=0.0, le=1.0)
    fee_rate_cache_sec: float = Field(default=300.0, ge=0)
    # Operator-supplied fee rate; skips the on-chain lookup when set
    fee_rate_override: float | None = Field(default=None, ge=0.0, lt=1.0)
    # Whether NO-basket conversion is available. Off until an operator enables it.
    convert_active: bool = False

    # Gas estimation for convert
    gas_per_convert: int = Field(default=250_000, gt=0)
    gas_price_gwei: float = Field(default=30.0, gt=0)  # default, overridden at runtime
    gas_cache_sec: float = 10.0
    allow_network_gas: bool = True

    # Limits
    max_groups: int = Field(default=0, ge=0)  # 0 = no limit
    max_legs: int = Field(default=30, ge=2)

    # Logging
    log_level: str = "INFO"
    json_log_file: str | None = None

    # HTTP surface
    server_host: str = "127.0.0.1"
    server_port: int = Field(default=8000, ge=1, le=65535)

    # Control-plane seeds (first start only)
    observation_only: bool = True
    manual_approval_required: bool = True
    auto_exec: bool = False
    kill_switch: bool = False
    min_edge_threshold: float = Field(default=0.02, ge=0.0, lt=1.0)
    min_depth_usdc: float = Field(default=100.0, ge=0)
    # auto_exec and the exposure caps are persisted for callers; nothing here enforces them.
    max_exposure_per_market: float = Field(default=500.0, gt=0)
    daily_max_exposure: float = Field(default=2000.0, gt=0)


def control_defaults(cfg: Config) -> SystemControl:
    """Seed values for the stored control plane."""
    return SystemControl(
        kill_switch=cfg.kill_switch,
        observation_only=cfg.observation_only,
        manual_approval_required=cfg.manual_approval_required,
        auto_exec=cfg.auto_exec,
        min_edge_threshold=cfg.min_edge_threshold,
        min_depth_usdc=cfg.min_depth_usdc,
        max_exposure_per_market=cfg.max_exposure_per_market,
        daily_max_exposure=cfg.daily_max_exposure,
    )


def load_config() -> Config:
    """Load and validate config from environment. Raises on invalid values."""
    return Config()
