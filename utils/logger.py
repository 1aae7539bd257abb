import logging
import os
import atexit
import glob
from datetime import datetime

LOG_DIR = "logs"
LOGGER_NAME = "TERMINAL_PLUS"

# Default settings
ENABLE_FILE_LOGGING = False  # Log to file
ENABLE_CONSOLE_LOGGING = True  # Log to console (for developers)
DEBUG_MODE = True  # Show detailed logs
KEEP_LOG_FILES = True


def configure_logging(enable_file_logging: bool = None,
                      enable_console_logging: bool = None,
                      debug_mode: bool = None,
                      keep_log_files: bool = None):
    """Apply logging switches (usually from AppConfig) and rebuild handlers"""
    global ENABLE_FILE_LOGGING, ENABLE_CONSOLE_LOGGING, DEBUG_MODE, KEEP_LOG_FILES
    if enable_file_logging is not None:
        ENABLE_FILE_LOGGING = enable_file_logging
    if enable_console_logging is not None:
        ENABLE_CONSOLE_LOGGING = enable_console_logging
    if debug_mode is not None:
        DEBUG_MODE = debug_mode
    if keep_log_files is not None:
        KEEP_LOG_FILES = keep_log_files
    return setup_logger()


def set_debug_mode(enabled: bool):
    """Toggle debug output at runtime"""
    global DEBUG_MODE
    DEBUG_MODE = enabled
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setLevel(logging.DEBUG if enabled else logging.INFO)


def is_debug_mode() -> bool:
    """Current debug switch"""
    return DEBUG_MODE


# Track current log file for cleanup
_current_log_file = None


def cleanup_logs():
    """Remove run logs on exit unless they should be kept"""
    if KEEP_LOG_FILES or not os.path.exists(LOG_DIR):
        return
    for f in glob.glob(os.path.join(LOG_DIR, "*.log")):
        try:
            os.remove(f)
        except OSError:
            pass
    try:
        if not os.listdir(LOG_DIR):
            os.rmdir(LOG_DIR)
    except OSError:
        pass


atexit.register(cleanup_logs)


def setup_logger(name=LOGGER_NAME):
    global _current_log_file

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Clear existing handlers
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s"
    )

    # File handler - only when ENABLE_FILE_LOGGING = True
    if ENABLE_FILE_LOGGING:
        os.makedirs(LOG_DIR, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = os.path.join(LOG_DIR, f"run_{timestamp}.log")
        _current_log_file = log_file

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    # Console handler - only when ENABLE_CONSOLE_LOGGING = True
    if ENABLE_CONSOLE_LOGGING:
        ch = logging.StreamHandler()
        ch.setLevel(logging.DEBUG if DEBUG_MODE else logging.INFO)
        ch.setFormatter(formatter)
        logger.addHandler(ch)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger


def _get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        logger = setup_logger()
    return logger


def log(message: str):
    """Info-level log line, dropped unless DEBUG_MODE is on"""
    if not DEBUG_MODE:
        return  # Skip logging in production mode
    _get_logger().info(message)


def log_warning(message: str):
    """Warnings are always emitted, regardless of DEBUG_MODE"""
    _get_logger().warning(message)


def log_error(message: str):
    """Errors are always emitted, regardless of DEBUG_MODE"""
    _get_logger().error(message)
