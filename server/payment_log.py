"""Logging setup and the payment audit trail.

Payment events go to the ``server.payments`` logger as one JSON object per
line so they can be grepped by action, order id or user.
"""

import json
import logging

from server.config import LOG_LEVEL, PAYMENT_LOG_FILE

payments_logger = logging.getLogger("server.payments")


def configure_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if PAYMENT_LOG_FILE and not payments_logger.handlers:
        handler = logging.FileHandler(PAYMENT_LOG_FILE, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        payments_logger.addHandler(handler)


def payment_log(action: str, level: int = logging.INFO, **data) -> None:
    payments_logger.log(level, "%s %s", action, json.dumps(data, default=str, sort_keys=True))
