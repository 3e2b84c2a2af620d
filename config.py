"""
Central configuration for the purchase-order workflow.

All paths, tolerances, and supplier notification settings are defined here.
Override via environment variables or by passing a Config instance directly.

Settings priority (highest wins):
  1. Environment variables
  2. config/workflow_settings.json  (admin-editable, persisted)
  3. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

# Default data locations (relative to project root)
DEFAULT_OUTPUT_DIR      = PROJECT_ROOT / "output"
DEFAULT_DB_PATH         = DEFAULT_OUTPUT_DIR / "workflow.db"
DEFAULT_ATTACHMENTS_DIR = DEFAULT_OUTPUT_DIR / "attachments"
DEFAULT_TEMPLATES_DIR   = PROJECT_ROOT / "defaults"

# Σ milestone percentages must be 100 ± this
DEFAULT_PERCENTAGE_TOLERANCE = 0.01


@dataclass
class Config:
    # --- Storage ---
    output_dir: Path = field(default_factory=lambda: DEFAULT_OUTPUT_DIR)
    db_path: Path = field(
        default_factory=lambda: Path(os.getenv("DB_PATH", str(DEFAULT_DB_PATH)))
    )
    attachments_dir: Path = field(
        default_factory=lambda: Path(os.getenv("ATTACHMENTS_DIR", str(DEFAULT_ATTACHMENTS_DIR)))
    )

    # --- Supplier notification (sent when a PO leaves draft) ---
    # Any endpoint that accepts a JSON POST works: an email relay, a Slack
    # incoming webhook, or the supplier's own API.
    supplier_notify_url: Optional[str] = field(
        default_factory=lambda: os.getenv("SUPPLIER_NOTIFY_URL")
    )
    supplier_notify_method: str = field(
        default_factory=lambda: os.getenv("SUPPLIER_NOTIFY_METHOD", "POST")
    )
    supplier_notify_headers_json: Optional[str] = field(
        default_factory=lambda: os.getenv("SUPPLIER_NOTIFY_HEADERS")
    )
    supplier_notify_template: str = field(
        default_factory=lambda: os.getenv("SUPPLIER_NOTIFY_TEMPLATE", "supplier_notification.json.j2")
    )
    supplier_notify_timeout_seconds: int = field(
        default_factory=lambda: int(os.getenv("SUPPLIER_NOTIFY_TIMEOUT", "30"))
    )

    # --- Ledger tolerances ---
    percentage_tolerance: float = DEFAULT_PERCENTAGE_TOLERANCE
    default_currency: str = "USD"

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from workflow_settings.json if present."""
        settings_file = self.config_dir / "workflow_settings.json"
        if not settings_file.exists():
            return
        _type_map: dict[str, type] = {
            "percentage_tolerance":            float,
            "default_currency":                str,
            "supplier_notify_url":             str,
            "supplier_notify_method":          str,
            "supplier_notify_headers_json":    str,
            "supplier_notify_template":        str,
            "supplier_notify_timeout_seconds": int,
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            for key, val in overrides.items():
                if key in _type_map and hasattr(self, key):
                    setattr(self, key, _type_map[key](val))
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load workflow_settings.json: %s", exc)

    @property
    def config_dir(self) -> Path:
        return Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))

    def ensure_output_dir(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.attachments_dir.mkdir(parents=True, exist_ok=True)
