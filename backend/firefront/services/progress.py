"""Fire-and-forget progress checkpoints for long-running builds."""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class ProgressReporter(Protocol):
    def emit(
        self,
        stage: str,
        detail: str | None = None,
        step: int | None = None,
        total: int | None = None,
    ) -> None: ...


class LoggingProgressReporter:
    """Report checkpoints as INFO log lines."""

    def emit(
        self,
        stage: str,
        detail: str | None = None,
        step: int | None = None,
        total: int | None = None,
    ) -> None:
        counter = f" [{step}/{total}]" if step is not None and total else ""
        suffix = f": {detail}" if detail else ""
        logger.info("%s%s%s", stage, counter, suffix)


class NullProgressReporter:
    def emit(
        self,
        stage: str,
        detail: str | None = None,
        step: int | None = None,
        total: int | None = None,
    ) -> None:
        return None
