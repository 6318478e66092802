"""Console and file logging for homestead."""
import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

console = Console(stderr=True)

ROOT_LOGGER = "homestead"
FILE_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    """
    Returns a logger below the ``homestead`` root logger.

    :param name: Logger name, typically ``__name__``.
    :return: The logger.
    """
    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configures the root homestead logger with a Rich console handler and,
    optionally, a file handler.

    Calling it again replaces the handlers installed by the previous call.

    :param verbose: Enable DEBUG level output.
    :param log_file: Optional path of a log file to append to.
    :return: The configured root logger.
    """
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        if getattr(handler, "_homestead", False):
            root.removeHandler(handler)
            handler.close()

    handler = RichHandler(console=console, show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler._homestead = True
    root.addHandler(handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        file_handler._homestead = True
        root.addHandler(file_handler)

    root.setLevel(level)
    root.debug(f"Logging initialized (level={logging.getLevelName(level)})")
    return root
