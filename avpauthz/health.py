"""The gRPC-style health check service."""

from __future__ import annotations

import enum
import logging
from typing import Any, Iterator

log = logging.getLogger(__name__)


class ServingStatus(enum.IntEnum):
    """Serving states of the standard health protocol."""

    UNKNOWN = 0
    SERVING = 1
    NOT_SERVING = 2
    SERVICE_UNKNOWN = 3


class HealthService:
    """Reports the service as always serving."""

    def __init__(self) -> None:
        log.info("Initializing health check service")

    def check(self, request: Any = None) -> ServingStatus:
        """The current serving status."""
        log.debug("Health check requested")
        return ServingStatus.SERVING

    def watch(self, request: Any = None) -> Iterator[ServingStatus]:
        """A stream holding the current status once, then ending."""
        log.debug("Health watch stream requested")
        yield ServingStatus.SERVING