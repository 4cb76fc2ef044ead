import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.markup import escape
from rich.theme import Theme

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

THEME = Theme({
    "success": "bold green",
    "error": "bold red",
    "skip": "bold cyan",
    "warning": "bold yellow",
    "info": "dim white"
})

LEVELS = {
    "INFO": logging.INFO,
    "ERROR": logging.ERROR,
}


class Reporter(ABC):
    """
    Leveled logging capability handed to every step.
    Subclasses decide where the lines go; steps only call log/info/error.
    """

    def __init__(self, console: Optional[Console] = None, verbose: bool = True):
        if console is None:
            console = Console(theme=THEME)
        else:
            console.push_theme(THEME)
        self.console = console
        self.verbose = verbose

    @abstractmethod
    def log(self, level: str, message: str) -> None:
        ...

    def info(self, message: str) -> None:
        self.log("INFO", message)

    def error(self, message: str, exc_info: Union[bool, BaseException] = False) -> None:
        """exc_info: True inside an except block, or the caught exception itself."""
        self.log("ERROR", message)

    def log_step(self, status: str, msg: str) -> None:
        """
        Prints a UI line for the current step (console only).
        """
        icons = {
            "success": "✅",
            "error": "❌",
            "skip": "🔵",
            "warning": "🔶",
            "info": "ℹ️"
        }
        icon = icons.get(status, "•")
        if status == "error" or self.verbose:
            self.console.print(f"{icon} [{status}]{escape(msg)}[/{status}]")


class FileReporter(Reporter):
    """
    Appends every line to the provisioning log file and mirrors it to the console.
    """

    def __init__(self, log_file: Optional[str], console: Optional[Console] = None, verbose: bool = True):
        super().__init__(console=console, verbose=verbose)
        self.log_file = log_file
        self._logger = logging.getLogger(f"kubeprov.{log_file or 'console'}")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False

        # Don't add handlers if they're already configured
        if log_file and not self._logger.handlers:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
            handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            self._logger.addHandler(handler)

        self._formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    def log(self, level: str, message: str) -> None:
        levelno = LEVELS.get(level.upper(), logging.INFO)
        self._logger.log(levelno, message)

        if levelno >= logging.ERROR or self.verbose:
            record = logging.LogRecord("kubeprov", levelno, "", 0, message, None, None)
            line = escape(self._formatter.format(record))
            style = "error" if levelno >= logging.ERROR else "info"
            self.console.print(f"[{style}]{line}[/{style}]", highlight=False)

    def error(self, message: str, exc_info: Union[bool, BaseException] = False) -> None:
        if exc_info:
            # Full stacktrace goes to the file only
            self._logger.error(message, exc_info=exc_info)
            self.console.print(f"[error]{escape(message)}[/error]", highlight=False)
            return
        self.log("ERROR", message)

    def close(self) -> None:
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)
