"""Runtime configuration for the trade security service.

Provides a dataclass loaded from environment variables, with a process-wide
instance that tests and the CLI can replace.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from tradeguard.config.defaults import (
    AUDIT_DEFAULT_LEVEL,
    AUDIT_DEFAULT_SAMPLE_RATE,
    AUDIT_LOG_FILENAME,
    DATA_DIR_NAME,
    TRADES_DB_FILENAME,
)


@dataclass
class SecurityConfig:
    """Configuration for storage and auditing.

    Attributes:
        data_dir: Directory holding the SQLite database and the audit log.
        audit_level: Minimum audit level written ("DEBUG", "INFO", "WARN", "ERROR").
        audit_sample_rate: Fraction of DEBUG audit events kept.
        audit_enabled: When False, no audit file is written at all.
    """

    data_dir: Path = field(default_factory=lambda: Path.cwd() / DATA_DIR_NAME)
    audit_level: str = AUDIT_DEFAULT_LEVEL
    audit_sample_rate: float = AUDIT_DEFAULT_SAMPLE_RATE
    audit_enabled: bool = True

    @classmethod
    def from_env(cls) -> "SecurityConfig":
        """Create config from environment variables."""
        data_dir = os.environ.get("TRADEGUARD_DATA_DIR")
        return cls(
            data_dir=Path(data_dir) if data_dir else Path.cwd() / DATA_DIR_NAME,
            audit_level=os.environ.get("TRADEGUARD_AUDIT_LEVEL", AUDIT_DEFAULT_LEVEL).upper(),
            audit_sample_rate=float(os.environ.get(
                "TRADEGUARD_AUDIT_SAMPLE_RATE", str(AUDIT_DEFAULT_SAMPLE_RATE))),
            audit_enabled=os.environ.get("TRADEGUARD_AUDIT_ENABLED", "1").lower()
                not in ("0", "false", "no"),
        )

    @property
    def db_path(self) -> Path:
        return self.data_dir / TRADES_DB_FILENAME

    @property
    def audit_path(self) -> Optional[Path]:
        if not self.audit_enabled:
            return None
        return self.data_dir / AUDIT_LOG_FILENAME


# Global config instance
_config: Optional[SecurityConfig] = None


def get_config() -> SecurityConfig:
    """Get global security config."""
    global _config
    if _config is None:
        _config = SecurityConfig.from_env()
    return _config


def set_config(config: Optional[SecurityConfig]) -> None:
    """Set global security config (None resets to environment defaults)."""
    global _config
    _config = config
