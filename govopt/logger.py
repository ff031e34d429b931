"""
Governance Engine Logging
=========================

Every module logs through ``get_logger(__name__)``. The first call wires the
root logger once: a ``rich`` console handler that colours proposal digests,
module ids and lifecycle states, plus a size-rotated file under ``logs/``.

Level, record format and date format come from ``.env`` (see
govopt/constants.py). ``GOVOPT_LOG_TO_FILE=False`` keeps the engine off the
filesystem, e.g. inside a host that already ships its own logs.

Usage:
    >>> from govopt.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Proposal 0x1234abcd… bound to module #2")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    GOVOPT_LOG_TO_FILE,
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
    LOG_DATE_FORMAT,
    LOG_FORMAT,
    LOG_LEVEL,
    LOG_MAX_FILE_SIZE,
)

PROJECT_ROOT = Path(__file__).parent.parent
LOG_FILE_PATH = PROJECT_ROOT / "logs" / "govopt.log"

_THEME = Theme({
    "govopt.arrow":         "bold yellow",
    "govopt.digest":        "cyan",
    "govopt.module":        "bold blue",
    "govopt.state_good":    "bold green",
    "govopt.state_bad":     "bold red",
    "govopt.critical":      "bold red reverse",
    "govopt.error":         "bold red",
    "govopt.warning":       "bold yellow",
    "govopt.logger_name":   "magenta",
    "govopt.timestamp":     "bold cyan",
})


class GovernanceHighlighter(RegexHighlighter):
    """Colours the tokens a reader follows a proposal by."""

    base_style = "govopt."
    highlights = [
        r"(?P<timestamp>^\S+ UTC)",
        r"(?P<arrow>→)",
        r"(?P<digest>\b0x[0-9a-fA-F]{8,}\b)",
        r"(?P<module>module #\d+|#\d+\b)",
        r"(?P<state_good>\b(ACTIVE|SUCCEEDED|EXECUTED)\b)",
        r"(?P<state_bad>\b(FAILED|CANCELED)\b)",
        r"(?P<critical>\bCRITICAL\b)",
        r"(?P<error>\bERROR\b)",
        r"(?P<warning>\bWARNING\b)",
        r"- (?P<logger_name>govopt[\w.]*) -",
    ]


class TerminalSafeFormatter(logging.Formatter):
    """
    Strips ANSI escapes and control characters from formatted records.

    Proposal metadata, voter ids and action targets are caller-supplied and
    end up in log lines verbatim (CWE-117).
    """

    _ANSI = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b[@-Z\\-_]")
    _CONTROL = re.compile(r"[\x00-\x08\x0B-\x1F\x7F]")

    @classmethod
    def sanitize(cls, text: str) -> str:
        if not text:
            return text
        return cls._CONTROL.sub("", cls._ANSI.sub("", text))

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


def _checked_format(fmt: str) -> str:
    """Return *fmt* if it renders a sample record, else the default format."""
    fmt = str(fmt or LOG_FORMAT.default())
    sample = logging.LogRecord("govopt", logging.INFO, "", 0, "probe", (), None)
    try:
        logging.Formatter(fmt=fmt).format(sample)
    except (ValueError, KeyError, TypeError) as e:
        print(f"govopt.logger: bad LOG_FORMAT ({e}); using default", file=sys.stderr)
        return str(LOG_FORMAT.default())
    return fmt


def _checked_datefmt(datefmt: str) -> str:
    datefmt = str(datefmt or LOG_DATE_FORMAT.default())
    if "%" not in datefmt:
        print("govopt.logger: LOG_DATE_FORMAT has no directives; using default", file=sys.stderr)
        return str(LOG_DATE_FORMAT.default())
    try:
        time.strftime(datefmt)
    except ValueError:
        return str(LOG_DATE_FORMAT.default())
    return datefmt


class LogManager:
    """
    Process-wide logging setup (singleton).

    ``configure`` runs at most once; later calls are no-ops so importing
    modules in any order yields the same handlers.
    """

    _instance: Optional["LogManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "LogManager":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._configured = False
        return cls._instance

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: Optional[bool] = None,
    ) -> None:
        """
        Attach console / file handlers to the root logger.

        Args:
            log_level:      Level name; defaults to LOG_LEVEL from .env
            log_file:       Target file; defaults to logs/govopt.log
            console_output: Attach the console handler
            file_output:    Attach the rotating file handler; defaults to
                            GOVOPT_LOG_TO_FILE
        """
        with self._lock:
            if self._configured:
                return

            level = getattr(logging, str(log_level or LOG_LEVEL).upper(), logging.INFO)
            root = logging.getLogger()
            root.setLevel(level)
            root.handlers.clear()

            # Timestamps in UTC so ledgers from different hosts line up
            formatter = TerminalSafeFormatter(
                fmt=_checked_format(LOG_FORMAT),
                datefmt=_checked_datefmt(LOG_DATE_FORMAT) + " UTC",
            )
            formatter.converter = time.gmtime

            handlers = []
            if console_output:
                handlers.append(self._console_handler())
            if file_output is None:
                file_output = bool(GOVOPT_LOG_TO_FILE)
            if file_output:
                path = log_file or LOG_FILE_PATH
                path.parent.mkdir(parents=True, exist_ok=True)
                handlers.append(logging.handlers.RotatingFileHandler(
                    filename=str(path),
                    maxBytes=LOG_MAX_FILE_SIZE,
                    backupCount=LOG_BACKUP_COUNT,
                    encoding="utf-8",
                ))

            for handler in handlers:
                handler.setLevel(level)
                handler.setFormatter(formatter)
                root.addHandler(handler)
            self._configured = True

    @staticmethod
    def _console_handler() -> logging.Handler:
        if not LOG_CONSOLE_HIGHLIGHTING:
            return logging.StreamHandler(sys.stdout)
        return RichHandler(
            console=Console(theme=_THEME, highlight=False),
            highlighter=GovernanceHighlighter(),
            keywords=[],
            rich_tracebacks=True,
            show_time=False,
            show_level=False,
            show_path=False,
            markup=False,
        )

    def get_logger(self, name: str) -> logging.Logger:
        if not self._configured:
            self.configure()
        return logging.getLogger(name)


_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """Logger for *name* (normally ``__name__``), configuring on first use."""
    return _manager.get_logger(name)
