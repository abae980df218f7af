"""
structlog setup for the ritual service.

Every record goes to stderr and, unless disabled, to a per-run file
``logs/serenis_YYYYMMDD_HHMMSS.log``. Debug mode renders colored console
lines; otherwise records are JSON. Request-scoped values (request_id,
session_id) travel through contextvars.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import structlog
from structlog.typing import Processor

from serenis.core.config import settings

LOG_FILE_PREFIX = "serenis_"


def _prune_run_logs(logs_dir: Path, keep: int) -> None:
    """Keep only the ``keep`` newest run logs in ``logs_dir``."""
    runs = sorted(
        logs_dir.glob(f"{LOG_FILE_PREFIX}*.log"),
        key=lambda p: p.stat().st_mtime,
    )
    stale = runs[: max(len(runs) - keep, 0)]
    for path in stale:
        try:
            path.unlink()
        except OSError:
            # Another process may still hold the file
            continue


def _renderer_chain(debug: bool) -> List[Processor]:
    chain: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]
    if debug:
        chain.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        chain += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return chain


def _reset_root_logger(level: int) -> logging.Logger:
    root = logging.getLogger()
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)
    root.setLevel(level)
    return root


def configure_logging(
    log_runs_to_keep: int = 5,
    logs_dir: Optional[Path] = Path("logs"),
    level: int = logging.INFO,
) -> Optional[Path]:
    """Configure structlog and the stdlib root logger.

    Safe to call more than once; handlers from a previous call are closed.

    Args:
        log_runs_to_keep: Run log files retained, including the new one
        logs_dir: Directory for run logs, or None for console output only
        level: Minimum level for both structlog and stdlib records

    Returns:
        Path of this run's log file, or None when file output is disabled
    """
    root = _reset_root_logger(level)
    plain = logging.Formatter("%(message)s")

    console = logging.StreamHandler()
    console.setFormatter(plain)
    root.addHandler(console)

    log_file: Optional[Path] = None
    if logs_dir is not None:
        logs_dir.mkdir(parents=True, exist_ok=True)
        _prune_run_logs(logs_dir, keep=max(log_runs_to_keep - 1, 0))

        log_file = logs_dir / f"{LOG_FILE_PREFIX}{datetime.now():%Y%m%d_%H%M%S}.log"
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setFormatter(plain)
        root.addHandler(file_handler)

    structlog.configure(
        processors=_renderer_chain(settings.debug),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return log_file


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """Attach values (e.g. ``request_id``) to every log line in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
