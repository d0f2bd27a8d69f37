from pathlib import Path
from typing import Dict, List, Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

KILT = "kilt"
MOONBEAM = "moonbeam"


class MonitorSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        env_prefix="KEYPASS_MONITOR_",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Retry Settings
    max_retries: int = Field(default=3, ge=0, description="Retry budget for connects and transactions")
    base_retry_delay_ms: int = Field(default=5000, ge=0, description="Base delay between retries")
    max_retry_delay_ms: int = Field(default=30000, ge=0, description="Cap for exponential connect backoff")
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Exponential backoff multiplier")

    # Timeouts
    connection_timeout_ms: int = Field(default=10000, gt=0, description="Per-endpoint connect timeout")
    transaction_timeout_ms: int = Field(default=300000, gt=0, description="Confirmation wait timeout")
    health_check_timeout_ms: int = Field(default=5000, gt=0, description="Liveness probe timeout")

    # Periodic Tasks
    enable_health_checks: bool = Field(default=True, description="Run periodic health checks")
    health_check_interval_ms: int = Field(default=30000, gt=0, description="Health check period")
    auto_reconnect: bool = Field(default=True, description="Reconnect when a health probe fails")
    enable_metrics: bool = Field(default=True, description="Compute periodic metrics snapshots")
    metrics_interval_ms: int = Field(default=60000, gt=0, description="Metrics snapshot period")
    metrics_window_ms: int = Field(default=3600000, gt=0, description="Default metrics window length")

    # Health Thresholds
    block_staleness_ms: int = Field(default=30000, gt=0, description="Head age before block production is degraded")
    high_fee_threshold_wei: int = Field(default=100_000_000_000, ge=0, description="Fee level considered abnormally high")

    # Error Log
    max_error_reports: int = Field(default=1000, gt=0, description="Error reports kept before FIFO eviction")

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(default="info", description="Logging level")
    log_format: Literal["auto", "json", "console"] = Field(default="auto", description="auto = JSON unless debug")

    # Networks
    kilt_endpoints: List[str] = Field(
        default_factory=lambda: ["https://spiritnet.kilt.io", "https://kilt-rpc.dwellir.com"],
        description="Ordered KILT RPC endpoints (failover order)",
    )
    moonbeam_endpoints: List[str] = Field(
        default_factory=lambda: ["https://rpc.api.moonbeam.network", "https://moonbeam.public.blastapi.io"],
        description="Ordered Moonbeam RPC endpoints (failover order)",
    )
    receipt_poll_interval_ms: int = Field(default=2000, gt=0, description="Receipt polling period for RPC clients")
    rpc_request_timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP timeout for JSON-RPC calls")

    # Server Settings
    http_host: str = Field(default="127.0.0.1", description="API host")
    http_port: int = Field(default=8000, description="API port")

    @model_validator(mode="after")
    def _check_delays(self) -> "MonitorSettings":
        if self.max_retry_delay_ms < self.base_retry_delay_ms:
            raise ValueError("max_retry_delay_ms must be >= base_retry_delay_ms")
        return self

    def endpoints_for(self, network: str) -> List[str]:
        return list(self.network_endpoints.get(network, []))

    @property
    def network_endpoints(self) -> Dict[str, List[str]]:
        return {KILT: self.kilt_endpoints, MOONBEAM: self.moonbeam_endpoints}


def get_settings(**overrides) -> MonitorSettings:
    """Build settings from the environment, with explicit overrides on top."""
    return MonitorSettings(**overrides)
