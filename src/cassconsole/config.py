from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional, List

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_CONFIG_NAME = "console.yaml"
CONFIG_ENV_VAR = "CASSCONSOLE_CONFIG"
DEFAULT_JMX_PORT = 7199
DEFAULT_CQL_PORT = 9042


def get_config_dir() -> Path:
    """Get configuration directory."""
    return Path(__file__).parent.parent.parent / "config"


class CassandraConfig(BaseModel):
    """CQL connection used for node discovery and basic metrics."""
    contact_points: List[str] = Field(default_factory=lambda: ["127.0.0.1"])
    port: int = DEFAULT_CQL_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    local_datacenter: Optional[str] = None
    connect_timeout: float = 10.0
    # Peers are probed on the CQL port before being reported as reachable
    peer_probe_timeout: float = 3.0


class JMXConfig(BaseModel):
    """Management interface settings."""
    port: int = DEFAULT_JMX_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    java_path: str = "java"
    connect_timeout: float = 10.0
    probe_timeout: float = 5.0
    # Reads and connects for one node share only that node's threads
    workers_per_node: int = 4

    # All nodes reached through one forwarded host when tunnelling
    ssh_tunnel: bool = False
    ssh_tunnel_host: str = "localhost"


class BackoffConfig(BaseModel):
    """Reconnect backoff: delay = min(max_delay, base_delay * 2 ** attempt)."""
    base_delay: float = 1.0
    max_delay: float = 60.0

    @model_validator(mode="after")
    def check_bounds(self) -> "BackoffConfig":
        if self.base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self


class SamplingConfig(BaseModel):
    """Per-group and whole-sample read timeouts."""
    group_timeout: float = 5.0
    sample_timeout: float = 15.0

    @model_validator(mode="after")
    def check_timeouts(self) -> "SamplingConfig":
        if self.group_timeout <= 0 or self.sample_timeout <= 0:
            raise ValueError("Sampling timeouts must be positive")
        if self.group_timeout > self.sample_timeout:
            raise ValueError("group_timeout must not exceed sample_timeout")
        return self


class CacheConfig(BaseModel):
    """Metrics cache windows."""
    ttl_seconds: float = 5.0
    stale_retention_seconds: float = 300.0


class BroadcastConfig(BaseModel):
    """Push loop settings."""
    interval_seconds: float = 5.0
    fetch_timeout: float = 10.0
    channel: str = "metrics"

    @field_validator("interval_seconds")
    @classmethod
    def positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Broadcast interval must be positive")
        return v


class ReaperConfig(BaseModel):
    """Idle connection sweep settings."""
    interval_seconds: float = 30.0
    idle_threshold_seconds: float = 120.0


class LoggingConfig(BaseModel):
    """Logging setup applied by the API process."""
    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    file: Optional[str] = None


class ApiConfig(BaseModel):
    """HTTP API settings."""
    host: str = "0.0.0.0"
    port: int = 3001
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    prometheus: bool = True


class StaticNode(BaseModel):
    """A node listed directly in configuration instead of discovered over CQL."""
    host: str
    management_port: Optional[int] = None
    datacenter: Optional[str] = None
    rack: Optional[str] = None


class ConsoleConfig(BaseModel):
    """Root configuration for the console backend."""
    name: str = "Cassandra Console"
    cassandra: CassandraConfig = Field(default_factory=CassandraConfig)
    jmx: JMXConfig = Field(default_factory=JMXConfig)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    broadcast: BroadcastConfig = Field(default_factory=BroadcastConfig)
    reaper: ReaperConfig = Field(default_factory=ReaperConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    nodes: List[StaticNode] = Field(default_factory=list)

    @field_validator("nodes", mode="before")
    @classmethod
    def parse_nodes(cls, v: Any) -> Any:
        # Allow a plain list of host names
        if isinstance(v, list):
            return [{"host": item} if isinstance(item, str) else item for item in v]
        return v or []

    @classmethod
    def from_yaml(cls, path: Path) -> "ConsoleConfig":
        with open(path) as f:
            raw = yaml.safe_load(f) or {}

        # Accept both a top-level "console:" section and a flat document
        if "console" in raw and isinstance(raw["console"], dict):
            raw = raw["console"]
        return cls(**raw)


def apply_env_overrides(config: ConsoleConfig, environ: Optional[dict[str, str]] = None) -> ConsoleConfig:
    """Apply environment variable overrides on top of file configuration."""
    env = os.environ if environ is None else environ
    data = config.model_dump()

    if "SSH_TUNNEL_MODE" in env:
        data["jmx"]["ssh_tunnel"] = env["SSH_TUNNEL_MODE"].strip().lower() == "true"
    if env.get("SSH_TUNNEL_HOST"):
        data["jmx"]["ssh_tunnel_host"] = env["SSH_TUNNEL_HOST"]
    if env.get("JMX_PORT"):
        data["jmx"]["port"] = int(env["JMX_PORT"])
    if env.get("REFRESH_INTERVAL"):
        # Milliseconds, as the dashboard frontend configures it
        data["broadcast"]["interval_seconds"] = int(env["REFRESH_INTERVAL"]) / 1000
    if env.get("CASSANDRA_HOSTS"):
        data["cassandra"]["contact_points"] = [
            h.strip() for h in env["CASSANDRA_HOSTS"].split(",") if h.strip()
        ]
    if env.get("CASSANDRA_PORT"):
        data["cassandra"]["port"] = int(env["CASSANDRA_PORT"])
    if env.get("CORS_ORIGIN"):
        data["api"]["cors_origins"] = [env["CORS_ORIGIN"]]

    return ConsoleConfig(**data)


def load_config(path: str | Path | None = None) -> ConsoleConfig:
    """Load console configuration.

    Resolution order: explicit path, ``$CASSCONSOLE_CONFIG``, then
    ``config/console.yaml``. A missing default file yields built-in defaults;
    a missing explicit file is an error. Environment overrides (including
    values from a ``.env`` file) are applied last.
    """
    load_dotenv()

    explicit = path or os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        config_path = Path(os.path.expandvars(os.path.expanduser(str(explicit))))
        if not config_path.exists():
            raise FileNotFoundError(f"Config not found: {config_path}")
        config = ConsoleConfig.from_yaml(config_path)
    else:
        config_path = get_config_dir() / DEFAULT_CONFIG_NAME
        config = ConsoleConfig.from_yaml(config_path) if config_path.exists() else ConsoleConfig()

    return apply_env_overrides(config)
