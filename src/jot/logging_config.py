"""
Logging configuration for jot.

Library loggers are noisy by default; keep them quiet unless --verbose.
"""

import logging
import os

from rich.logging import RichHandler

NOISY_LOGGERS = ("sentence_transformers", "transformers", "chromadb", "httpx", "httpcore", "watchdog")


def configure_logging(verbose: bool = False) -> None:
    """Route log records through rich on stderr.

    Args:
        verbose: DEBUG for jot and the libraries it drives; otherwise jot logs
            at INFO and libraries only report errors.
    """
    if not verbose:
        os.environ.setdefault("HF_HUB_DISABLE_PROGRESS_BARS", "1")
        os.environ.setdefault("TOKENIZERS_PARALLELISM", "false")

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        root.addHandler(RichHandler(show_path=verbose, rich_tracebacks=True))

    logging.getLogger("jot").setLevel(logging.DEBUG if verbose else logging.INFO)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.ERROR)


def configure_ops_log(data_path) -> logging.Handler:
    """Persistent operations log at {data_path}/jot-ops.log (1MB, 3 backups)."""
    from logging.handlers import RotatingFileHandler
    from pathlib import Path

    log_path = Path(data_path) / "jot-ops.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(str(log_path), maxBytes=1_000_000, backupCount=3)
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    jot_logger = logging.getLogger("jot")
    jot_logger.addHandler(handler)
    if jot_logger.level == logging.NOTSET or jot_logger.level > logging.INFO:
        jot_logger.setLevel(logging.INFO)
    return handler
