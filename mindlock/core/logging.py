"""Logging setup shared by the API and worker processes."""
from __future__ import annotations

import logging.config
import os
from pathlib import Path

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "../.." / "configs" / "logging.yaml"


def configure_logging(config_path: Path | None = None) -> None:
    """Configure logging from YAML, falling back to ``basicConfig``.

    ``MINDLOCK_LOGGING_CONFIG`` overrides the default ``configs/logging.yaml`` location.
    """
    override = os.environ.get("MINDLOCK_LOGGING_CONFIG")
    path = config_path or (Path(override) if override else DEFAULT_CONFIG_PATH)
    if path.exists():
        import yaml  # type: ignore[import-untyped]

        with path.open("r", encoding="utf-8") as config_file:
            logging.config.dictConfig(yaml.safe_load(config_file))
    else:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
