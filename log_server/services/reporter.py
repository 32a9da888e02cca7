"""Error reporters receive unexpected errors raised while serving a request."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

LOGGER = logging.getLogger(__name__)


class Reporter(ABC):
    @abstractmethod
    def report(self, error: BaseException, context: dict[str, Any] | None = None) -> None:
        raise NotImplementedError


class NoopReporter(Reporter):
    def report(self, error: BaseException, context: dict[str, Any] | None = None) -> None:
        return None


class LogReporter(Reporter):
    """Logs errors to ``logview.errors``. Takes no credentials."""

    def __init__(self) -> None:
        self._logger = logging.getLogger("logview.errors")

    def report(self, error: BaseException, context: dict[str, Any] | None = None) -> None:
        self._logger.error(
            "Unhandled error: %s",
            error,
            exc_info=(type(error), error, error.__traceback__),
            extra={"request_context": dict(context or {})},
        )


_REGISTRY: dict[str, Callable[[str], Reporter]] = {
    "noop": lambda token: NoopReporter(),
    "log": lambda token: LogReporter(),
}


def register(name: str, factory: Callable[[str], Reporter]) -> None:
    _REGISTRY[name] = factory


def is_registered(name: str) -> bool:
    return name in _REGISTRY


def get_reporter(name: str, token: str = "") -> Reporter:
    if not name:
        return NoopReporter()
    factory = _REGISTRY.get(name)
    if factory is None:
        LOGGER.warning("Unknown error reporter, using the noop reporter: %s", name)
        return NoopReporter()
    return factory(token)
