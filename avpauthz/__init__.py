"""Decision core for HTTP external authorization: path mapping, cached decisions, metrics and health."""

__version__ = "0.1.1"

__all__ = [
    "patterns",
    "resource_mapper",
    "auth_cache",
    "telemetry",
    "health",
    "request_context",
    "authorization",
]