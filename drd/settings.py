from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def parse_ports(raw: str) -> tuple[str, ...]:
    """Split a comma-separated port list, keeping order and dropping blanks."""
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    # Discovery
    fallback_ports: str = os.getenv("DRD_PORTS", "80,8080,3000,5000,8000")
    ping_interval_s: float = _env_float("DRD_PING_INTERVAL_S", 10.0)
    reconnect_interval_s: float = _env_float("DRD_RECONNECT_INTERVAL_S", 10.0)
    # 0 means one inspection worker per container.
    inspect_workers: int = _env_int("DRD_INSPECT_WORKERS", 0)
    event_queue_size: int = _env_int("DRD_EVENT_QUEUE_SIZE", 100)

    # Event log / logging
    db_path: str = os.getenv("DRD_DB_PATH", "drd.db")
    log_level: str = os.getenv("DRD_LOG_LEVEL", "INFO")

    @property
    def ports(self) -> tuple[str, ...]:
        return parse_ports(self.fallback_ports)


settings = Settings()
