"""Console logging setup.

Modules log through ``logging.getLogger(__name__)`` and pass context with
``extra={...}``. The formatter here renders that context as ``key=value`` pairs
after the message so every record carries both.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

_STANDARD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


class ContextFormatter(logging.Formatter):
    """Append non-standard record attributes (the ``extra`` context) to the message."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = {
            key: value
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRIBUTES and not key.startswith("_")
        }
        if not context:
            return message

        rendered = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
        return f"{message} | {rendered}"


def configure_logging(level: int = logging.INFO, stream: Optional[TextIO] = None) -> None:
    """Install a single stderr handler on the root logger."""
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(ContextFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
