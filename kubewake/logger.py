"""Shared logger for Kubewake (level via KUBEWAKE_LOG_LEVEL env or default INFO)."""

import logging
import os
from typing import Optional

from .constants import DEFAULT_LOG_LEVEL

log = logging.getLogger('kubewake')


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the CLI and server entry points."""
    name = (level or os.getenv('KUBEWAKE_LOG_LEVEL', DEFAULT_LOG_LEVEL)).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format='[%(asctime)s] %(levelname)s %(message)s'
    )


def log_exception(msg: str, exc: BaseException, level: int = logging.WARNING) -> None:
    """Log an exception with proper formatting."""
    log.log(level, f"{msg}: {exc.__class__.__name__}: {exc}")
