"""
Billing Core Configuration (``billing_kernel.config``).

Responsibility
--------------
Single typed configuration object for the billing core: money tolerances,
the undo window, the advisory-lock lease and the ledger store URL.  Loaded
from defaults, a mapping, a YAML file or the process environment.

Invariants enforced
-------------------
* All tolerances are ``Decimal`` and non-negative.
* ``undo_window_seconds`` and ``lock_duration_minutes`` are positive.

Failure modes
-------------
* Invalid values  -> ``ValueError`` at construction.
* Unknown YAML keys  -> ``ValueError`` (typos must not silently fall back).
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Self

import yaml

from billing_kernel.logging_config import get_logger

logger = get_logger("config")

AMOUNT_TOLERANCE = Decimal("0.01")
# Change-order headroom on purchase orders, as a fraction of the PO total.
PO_OVERAGE_TOLERANCE = Decimal("0.10")
UNDO_WINDOW_SECONDS = 30
LOCK_DURATION_MINUTES = 5

_ENV_PREFIX = "BILLING_"


@dataclass
class BillingConfig:
    """Configuration schema for the billing core."""

    amount_tolerance: Decimal = AMOUNT_TOLERANCE
    po_overage_tolerance: Decimal = PO_OVERAGE_TOLERANCE
    undo_window_seconds: int = UNDO_WINDOW_SECONDS
    lock_duration_minutes: int = LOCK_DURATION_MINUTES
    database_url: str = "sqlite:///billing.db"
    enforce_po_capacity: bool = True

    def __post_init__(self):
        self.amount_tolerance = Decimal(str(self.amount_tolerance))
        self.po_overage_tolerance = Decimal(str(self.po_overage_tolerance))
        if self.amount_tolerance < 0:
            raise ValueError("amount_tolerance cannot be negative")
        if self.po_overage_tolerance < 0:
            raise ValueError("po_overage_tolerance cannot be negative")
        if int(self.undo_window_seconds) <= 0:
            raise ValueError("undo_window_seconds must be positive")
        if int(self.lock_duration_minutes) <= 0:
            raise ValueError("lock_duration_minutes must be positive")
        self.undo_window_seconds = int(self.undo_window_seconds)
        self.lock_duration_minutes = int(self.lock_duration_minutes)
        logger.debug("billing_config_initialized", extra={
            "amount_tolerance": str(self.amount_tolerance),
            "po_overage_tolerance": str(self.po_overage_tolerance),
            "undo_window_seconds": self.undo_window_seconds,
            "lock_duration_minutes": self.lock_duration_minutes,
        })

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Self:
        """Build from a plain mapping; unknown keys are rejected."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown billing config keys: {', '.join(unknown)}")
        return cls(**dict(data))

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """
        Load from a YAML file.  The file may nest values under a top-level
        ``billing`` key.

        Raises:
            FileNotFoundError: if the file does not exist.
            yaml.YAMLError: if the file contains invalid YAML.
        """
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        if "billing" in raw and isinstance(raw["billing"], Mapping):
            raw = raw["billing"]
        config = cls.from_mapping(raw)
        logger.info("billing_config_loaded", extra={"path": str(path)})
        return config

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Self:
        """Read ``BILLING_<FIELD>`` variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            raw = env.get(_ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            if f.name == "enforce_po_capacity":
                values[f.name] = raw.strip().lower() in ("1", "true", "yes", "on")
            else:
                values[f.name] = raw
        return cls(**values)
