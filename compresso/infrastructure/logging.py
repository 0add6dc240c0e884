import logging
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def setup_logging(log_dir: Optional[Path] = None, debug: bool = False) -> logging.Logger:
    """Configures the root logger.

    With a log directory everything goes to ``compresso.log`` there so the
    terminal stays free for the dashboard. Without one, warnings and errors
    go to stderr through rich.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    level = logging.DEBUG if debug else logging.INFO
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_dir / "compresso.log")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(level)
    else:
        handler = RichHandler(show_path=False, rich_tracebacks=debug)
        handler.setLevel(logging.DEBUG if debug else logging.WARNING)

    root.addHandler(handler)
    root.setLevel(level)
    return logging.getLogger("compresso")
