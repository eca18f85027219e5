# File: lattice_link/config.py
"""
Runtime settings, read from LATTICE_LINK_* environment variables.

CLI flags override individual fields; nothing here is process-wide mutable
state, every component receives the Settings instance it should use.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    region: Optional[str] = None
    db_path: str = "./lattice-link.db"
    max_concurrency: int = 5
    retry_base_delay: float = 1.0
    retry_factor: float = 2.0
    retry_max_attempts: int = 5
    retry_max_delay: float = 30.0
    confirm_max_attempts: int = 10
    rollback_on_failure: bool = True
    kube_context: Optional[str] = None
    enable_cluster: bool = True
    rest_port: int = 8000
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def database_url(self) -> str:
        if self.db_path.startswith("sqlite:") or "://" in self.db_path:
            return self.db_path
        return f"sqlite:///{self.db_path}"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            region=os.getenv("LATTICE_LINK_REGION") or os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION"),
            db_path=os.getenv("LATTICE_LINK_DB_PATH", "./lattice-link.db"),
            max_concurrency=int(os.getenv("LATTICE_LINK_MAX_CONCURRENCY", 5)),
            retry_base_delay=float(os.getenv("LATTICE_LINK_RETRY_BASE_DELAY", 1.0)),
            retry_factor=float(os.getenv("LATTICE_LINK_RETRY_FACTOR", 2.0)),
            retry_max_attempts=int(os.getenv("LATTICE_LINK_RETRY_MAX_ATTEMPTS", 5)),
            retry_max_delay=float(os.getenv("LATTICE_LINK_RETRY_MAX_DELAY", 30.0)),
            confirm_max_attempts=int(os.getenv("LATTICE_LINK_CONFIRM_MAX_ATTEMPTS", 10)),
            rollback_on_failure=_env_bool("LATTICE_LINK_ROLLBACK_ON_FAILURE", True),
            kube_context=os.getenv("LATTICE_LINK_KUBE_CONTEXT"),
            enable_cluster=_env_bool("LATTICE_LINK_ENABLE_CLUSTER", True),
            rest_port=int(os.getenv("LATTICE_LINK_REST_PORT", 8000)),
            log_level=os.getenv("LATTICE_LINK_LOG_LEVEL", "INFO"),
            log_file=os.getenv("LATTICE_LINK_LOG_FILE"),
        )
