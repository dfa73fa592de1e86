# Logging_Config.py
# Description: Configuration for logging
#
# Imports
import logging
import sys
from pathlib import Path
from typing import List, Optional, Union
#
# 3rd-Party Imports
from loguru import logger as loguru_logger
#
# Local Imports
from listbook.config import get_cli_setting, get_log_file_path
#
########################################################################################################################
#
# Functions:

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

_LEVEL_MAPPING = {
    "TRACE": logging.DEBUG, "DEBUG": logging.DEBUG, "INFO": logging.INFO,
    "SUCCESS": logging.INFO, "WARNING": logging.WARNING, "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def sink_to_standard_logging(message) -> None:
    """Forwards a loguru message to the standard logging logger of the same name."""
    record = message.record
    std_level = _LEVEL_MAPPING.get(record["level"].name, logging.INFO)
    std_logger = logging.getLogger(record["name"])
    if record["exception"]:
        std_logger.log(std_level, record["message"], exc_info=record["exception"])
    else:
        std_logger.log(std_level, record["message"])


def configure_logging(level: Optional[str] = None,
                      log_file: Optional[Union[str, Path]] = None,
                      *,
                      forward_to_std_logging: bool = False,
                      enable_file_sink: bool = True) -> List[int]:
    """
    Sets up loguru sinks for the sync client.

    The console sink either writes to stderr or, when the library is embedded in a
    host that owns standard logging, forwards every record to the `logging` module.
    A rotating file sink is added next to the local store unless disabled.

    Returns:
        The loguru handler ids that were added.
    """
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    console_level = (level or get_cli_setting("general", "log_level", "INFO")).upper()
    handler_ids: List[int] = []

    loguru_logger.remove()
    if forward_to_std_logging:
        handler_ids.append(loguru_logger.add(sink_to_standard_logging, format="{message}", level="TRACE"))
    else:
        handler_ids.append(loguru_logger.add(sys.stderr, format=LOG_FORMAT, level=console_level))

    if enable_file_sink:
        try:
            log_file_path = Path(log_file) if log_file else get_log_file_path()
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            file_level = str(get_cli_setting("logging", "file_log_level", "INFO")).upper()
            handler_ids.append(loguru_logger.add(
                str(log_file_path),
                format=LOG_FORMAT,
                level=file_level,
                rotation=get_cli_setting("logging", "log_rotation", "10 MB"),
                retention=get_cli_setting("logging", "log_retention", 5),
                encoding="utf-8",
                enqueue=False,
            ))
            loguru_logger.debug(f"File logging enabled at '{log_file_path}' (level {file_level}).")
        except OSError as e:
            loguru_logger.warning(f"Could not set up file logging: {e}")

    loguru_logger.debug(f"Logging configured (console level {console_level}).")
    return handler_ids

#
# End of Logging_Config.py
########################################################################################################################
