from __future__ import annotations

import logging
from typing import Callable, Iterable, TypeVar

from ..utils import log_event

T = TypeVar("T")


class SequentialRunner:
    """Runs a handler over items one at a time.

    A handler failure is logged and counted; the remaining items still run.
    Exceptions listed in ``fatal`` are re-raised and end the run.
    ``describe`` supplies the log fields identifying an item.
    """

    def __init__(
        self,
        logger: logging.Logger,
        describe: Callable[[T], dict[str, object]] | None = None,
        fatal: tuple[type[BaseException], ...] = (),
    ) -> None:
        self.logger = logger
        self.describe = describe or (lambda item: {})
        self.fatal = fatal

    def run(self, items: Iterable[T], handler: Callable[[T], None]) -> list[tuple[T, Exception]]:
        failures: list[tuple[T, Exception]] = []
        for item in items:
            try:
                handler(item)
            except self.fatal as exc:
                log_event(
                    self.logger,
                    logging.ERROR,
                    "batch_aborted",
                    error=str(exc),
                    **self.describe(item),
                )
                raise
            except Exception as exc:  # noqa: BLE001
                failures.append((item, exc))
                log_event(
                    self.logger,
                    logging.ERROR,
                    "item_failed",
                    error=str(exc),
                    **self.describe(item),
                )
        return failures
