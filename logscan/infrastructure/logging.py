import logging
from pathlib import Path

# Connection chatter from the SFTP stack drowns out pipeline messages
_NOISY_LOGGERS = ("paramiko", "paramiko.transport", "fsspec", "fsspec.spec")


def setup_logging(log_path: Path, debug: bool = False) -> logging.Logger:
    """
    Setup logging configuration for logscan.

    Creates the log file's parent directory and routes all records to it.
    Returns configured logger instance.

    Args:
        log_path: Path to the log file
        debug: If True, enable DEBUG level logging
    """
    log_file = Path(log_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Configure logging level
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(threadName)s - %(message)s',
        handlers=[logging.FileHandler(log_file, encoding="utf-8")],
        force=True  # Override any existing configuration
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
