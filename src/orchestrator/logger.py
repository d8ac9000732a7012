import logging
from typing import List, Optional

import notifiers.logging

from orchestrator import config

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s - %(message)s"


def get_log_handlers(logger: logging.Logger) -> List[logging.Handler]:
    if config.TELEGRAM_TOKEN is None:
        return []
    handler = notifiers.logging.NotificationHandler(
        "telegram",
        defaults={
            "token": config.TELEGRAM_TOKEN,
            "chat_id": config.TELEGRAM_CHAT_ID,
        },
    )
    handler.setLevel(logging.WARNING)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    return [handler]


def configure_logging(
    logger: logging.Logger, level: Optional[int] = None
) -> List[logging.Handler]:
    """
    Apply the ``OVERRIDE_LOGGING`` level to the root logger and ``logger``, and
    attach the warning notification handler when one is configured.
    """
    if level is None:
        level = config.OVERRIDE_LOGGING
    logging.getLogger().setLevel(level)
    logger.setLevel(level)
    return get_log_handlers(logger)
