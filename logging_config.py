"""
Centralized Logging Configuration for QLab Sync

One logging setup shared by the OSC client, the reconciliation engine and the
snapshot store. Library modules never configure handlers themselves; they log
under the ``qlab`` hierarchy and the application calls ``setup_logging()``
once at startup.

Usage:
    from logging_config import setup_logging
    setup_logging()

    # Then in any module:
    import logging
    logger = logging.getLogger("qlab.controller")
    logger.info("Connected to workspace %s", workspace_id)
"""

import logging
import os
from logging.handlers import RotatingFileHandler

ROOT_LOGGER_NAME = "qlab"

# Per-message OSC traffic; DEBUG logs every send and reply
OSC_LOGGER_NAME = "qlab.controller"


def setup_logging(log_file="logs/qlab_sync.log", console_level=logging.INFO, file_level=logging.DEBUG,
                  osc_level=logging.INFO):
    """
    Configure logging for every ``qlab.*`` logger.

    Args:
        log_file: Path to the log file (default: logs/qlab_sync.log)
        console_level: Log level for console output (default: INFO)
        file_level: Log level for file output (default: DEBUG)
        osc_level: Level of the OSC traffic logger, independent of the
            handlers (default: INFO, individual sends are dropped)

    Returns:
        logging.Logger: The root ``qlab`` logger
    """
    log_dir = os.path.dirname(log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(logging.DEBUG)

    # Repeated setup calls must not stack handlers
    root_logger.handlers.clear()

    logging.getLogger(OSC_LOGGER_NAME).setLevel(osc_level)

    log_format = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # File Handler: rotates at 10MB, keeps 5 backups
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8"
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(log_format)
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(log_format)
    root_logger.addHandler(console_handler)

    root_logger.info("=" * 80)
    root_logger.info("QLab Sync Logging Initialized")
    root_logger.info(f"Log file: {os.path.abspath(log_file)}")
    root_logger.info(f"Console level: {logging.getLevelName(console_level)}")
    root_logger.info(f"File level: {logging.getLevelName(file_level)}")
    root_logger.info(f"OSC traffic level: {logging.getLevelName(osc_level)}")
    root_logger.info("=" * 80)

    return root_logger


def get_logger(name):
    """
    Get a logger instance under the ``qlab`` hierarchy.

    Args:
        name: Module or area name (e.g. "reconcile.engine")

    Returns:
        logging.Logger: Logger instance for the module
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
