"""Serve the metrics registry over http."""

import logging
from typing import Any

from prometheus_client import start_http_server

from .registry import Registry

__all__ = ["start_metrics_server"]

_LOGGER = logging.getLogger(__name__)

METRICS_PATH = "/metrics"


def start_metrics_server(registry: Registry, host: str, port: int) -> Any:
    """Start serving the registry in a background thread.

    Returns the http server, which may be stopped with `shutdown()`.
    """
    _LOGGER.info("Starting metrics server on %s:%d%s", host, port, METRICS_PATH)
    server, _ = start_http_server(port, addr=host, registry=registry.collector_registry)
    return server
