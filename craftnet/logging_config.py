"""Logging setup for the Craftnet backend.

Every module logs through a child of the ``craftnet`` logger so a single
handler installed by :func:`configure_logging` covers the whole service.
Money movements and saga steps get one-line helpers so their log lines
stay greppable (``kind=... user=... amount=...``).
"""

import logging
import sys
from decimal import Decimal

ROOT_LOGGER = "craftnet"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s | %(message)s"

_configured = False


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Install a stream handler on the root ``craftnet`` logger (idempotent)."""
    global _configured
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level.upper())
    if not _configured:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        _configured = True
    return root


def get_logger(name: str) -> logging.Logger:
    """Return a named logger, e.g. ``get_logger("craftnet.jobs")``."""
    return logging.getLogger(name)


_money_logger = logging.getLogger("craftnet.money")
_saga_logger = logging.getLogger("craftnet.sagas")


def log_money_movement(kind: str, user_id: str, amount: Decimal, reference: str) -> None:
    """Log a single wallet balance change."""
    _money_logger.info(
        "kind=%s user=%s amount=%s reference=%s", kind, user_id, amount, reference
    )


def log_saga_event(saga: str, step: str, job_id: str | None, outcome: str) -> None:
    """Log a saga step transition."""
    _saga_logger.info("saga=%s step=%s job=%s outcome=%s", saga, step, job_id, outcome)
