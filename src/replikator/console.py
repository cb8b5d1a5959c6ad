"""Rich logging setup for the operator.

All modules log through the standard logging module; this module renders
those records with Rich on a shared stderr console so that log lines can
use the same markup and theme everywhere.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# Custom theme with consistent colors
_THEME = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red bold",
        "highlight": "cyan bold",
    }
)

# Shared console instance; logs go to stderr
console = Console(theme=_THEME, stderr=True)


def configure_logging(level: str = "INFO") -> None:
    """Route the replikator loggers through Rich.

    Args:
        level: One of LOG_LEVELS (case-insensitive).

    Raises:
        ValueError: If the level is unknown.

    """
    name = level.upper()
    if name not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level}")

    handler = RichHandler(
        console=console,
        markup=True,
        show_path=False,
        rich_tracebacks=True,
        log_time_format="[%X]",
    )
    root = logging.getLogger("replikator")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(name)
    root.propagate = False

    # The kubernetes client and its leader election are chatty; keep them at WARNING unless asked
    for library in ("kubernetes", "leaderelection"):
        logging.getLogger(library).setLevel(logging.DEBUG if name == "DEBUG" else logging.WARNING)


def highlight(text: object) -> str:
    """Return text wrapped in highlight markup.

    Args:
        text: The text to highlight.

    Returns:
        Text wrapped in Rich markup for highlighting.

    """
    return f"[highlight]{text}[/highlight]"


class ObjectLogger(logging.LoggerAdapter):
    """Logger adapter that prefixes messages with the object being handled.

    Example:
        logger = ObjectLogger(logging.getLogger(__name__), "Secret", key)
        logger.info("Reconciling")   # -> "Secret default/foo: Reconciling"

    """

    def __init__(self, logger: logging.Logger, kind: str, key: object) -> None:
        super().__init__(logger, {"kind": kind, "object": str(key)})

    def process(self, msg, kwargs):
        return f"{self.extra['kind']} {highlight(self.extra['object'])}: {msg}", kwargs
