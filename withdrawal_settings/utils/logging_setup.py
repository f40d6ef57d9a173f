"""
Logging setup.

Configures loguru sinks from application settings.
"""

import sys

from loguru import logger

from withdrawal_settings.config.settings import Settings


def configure_logging(settings: Settings) -> None:
    """
    Install log sinks.

    Args:
        settings: Application settings
    """
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)

    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="1 day",
            retention="7 days",
            level=settings.log_level,
        )

    logger.debug(
        f"Logging configured: level={settings.log_level}, "
        f"file={settings.log_file or 'disabled'}"
    )
