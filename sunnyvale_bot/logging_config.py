import logging
import os
import sys

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS = ("discord", "discord.client", "discord.gateway", "discord.http", "httpx")


def setup_logging(level: int | None = None) -> logging.Logger:
    """Configure the ``sunnyvale`` logger; every module logs below it."""
    logger = logging.getLogger("sunnyvale")
    if logger.handlers:
        return logger  # already configured
    if level is None:
        name = os.getenv("SUNNYVALE_LOG_LEVEL", "INFO").strip().upper()
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    )
    logger.addHandler(handler)
    # reduce library noise unless debugging
    if level > logging.DEBUG:
        for noisy in _QUIET_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)
    return logger
