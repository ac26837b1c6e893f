import logging
import logging.config
from pathlib import Path
from typing import Optional

import yaml

from feed_cache.config.settings import settings

PACKAGE_LOGGER = "feed_cache"


def _fall_back(level: int, message: str) -> None:
    logging.basicConfig(level=logging.INFO)
    logging.getLogger(__name__).log(level, f"{message}. Using basicConfig.")


def setup_logging(config_path: Optional[Path] = None, debug: Optional[bool] = None) -> None:
    """
    Configure logging from the YAML dictConfig file.

    Call once at startup (the CLI does). A missing or unreadable file falls back to
    ``logging.basicConfig`` at INFO.

    Args:
        config_path: YAML file; ``settings.LOGGING_CONFIG_PATH`` when omitted.
        debug: Lower the package logger to DEBUG; defaults to ``settings.DEBUG``.
    """
    path = Path(config_path or settings.LOGGING_CONFIG_PATH)
    if not path.exists():
        _fall_back(logging.WARNING, f"Logging configuration file not found at {path}")
    else:
        try:
            with open(path, "rt") as f:
                logging.config.dictConfig(yaml.safe_load(f))
        except (OSError, ValueError, TypeError, AttributeError, yaml.YAMLError) as e:
            _fall_back(logging.ERROR, f"Error loading logging configuration from {path}: {e}")
        else:
            logging.getLogger(__name__).info(f"Logging configured from {path}")

    if settings.DEBUG if debug is None else debug:
        logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG)
