"""In-process metrics with a Prometheus text exposition."""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Iterator

log = logging.getLogger(__name__)

AVP_REQUESTS_TOTAL = "avp_requests_total"
CHECK_REQUEST_DURATION_SECONDS = "check_request_duration_seconds"
JWT_VALIDATION_TOTAL = "jwt_validation_total"
JWT_VALIDATION_FAILURES = "jwt_validation_failures"
CACHE_HITS = "avp_cache_hits_total"
CACHE_MISSES = "avp_cache_misses_total"
AVP_REQUEST_DURATION_SECONDS = "avp_request_duration_seconds"
JWKS_REFRESH_TOTAL = "jwks_refresh_total"
JWKS_REFRESH_FAILURES = "jwks_refresh_failures"

DEFAULT_PORT = 9000

_Labels = tuple[tuple[str, str], ...]


def _label_key(labels: dict[str, str]) -> _Labels:
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _format_labels(labels: _Labels) -> str:
    if not labels:
        return ""
    inner = ",".join(f'{k}="{_escape(v)}"' for k, v in labels)
    return "{" + inner + "}"


class Metrics:
    """Counters and duration observations for the authorizer."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, dict[_Labels, int]] = defaultdict(dict)
        self._histograms: dict[str, list[float]] = defaultdict(list)

    def _increment(self, name: str, **labels: str) -> None:
        key = _label_key(labels)
        with self._lock:
            series = self._counters[name]
            series[key] = series.get(key, 0) + 1

    def _observe(self, name: str, value: float) -> None:
        with self._lock:
            self._histograms[name].append(value)

    def counter(self, name: str, **kwargs: str) -> int:
        """Current value of a counter for the given labels."""
        with self._lock:
            return self._counters.get(name, {}).get(_label_key(kwargs), 0)

    def observations(self, name: str) -> list[float]:
        """All recorded durations of a histogram, in seconds."""
        with self._lock:
            return list(self._histograms.get(name, []))

    def record_request(self, method: str, path: str, status: str) -> None:
        """Count an authorization outcome."""
        self._increment(AVP_REQUESTS_TOTAL, method=method, path=path, status=status)

    def record_jwt_validation(self, issuer: str, success: bool) -> None:
        """Count a token validation and, if it failed, a failure."""
        self._increment(JWT_VALIDATION_TOTAL, issuer=issuer)
        if not success:
            self._increment(JWT_VALIDATION_FAILURES, issuer=issuer)

    def record_cache_hit(self) -> None:
        self._increment(CACHE_HITS)

    def record_cache_miss(self) -> None:
        self._increment(CACHE_MISSES)

    def record_jwks_refresh(self, issuer: str, success: bool) -> None:
        """Count a key-set refresh and, if it failed, a failure."""
        self._increment(JWKS_REFRESH_TOTAL, issuer=issuer)
        if not success:
            self._increment(JWKS_REFRESH_FAILURES, issuer=issuer)

    @contextmanager
    def _timed(self, name: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self._observe(name, time.perf_counter() - start)

    def time_check_request(self):
        """Context manager recording the duration of a check request."""
        return self._timed(CHECK_REQUEST_DURATION_SECONDS)

    def time_avp_request(self):
        """Context manager recording the duration of a policy evaluation call."""
        return self._timed(AVP_REQUEST_DURATION_SECONDS)

    def render(self) -> str:
        """All metrics in the Prometheus text format."""
        lines: list[str] = []
        with self._lock:
            for name in sorted(self._counters):
                lines.append(f"# TYPE {name} counter")
                for labels, value in sorted(self._counters[name].items()):
                    lines.append(f"{name}{_format_labels(labels)} {value}")
            for name in sorted(self._histograms):
                values = self._histograms[name]
                lines.append(f"# TYPE {name} summary")
                lines.append(f"{name}_sum {sum(values)}")
                lines.append(f"{name}_count {len(values)}")
        return "\n".join(lines) + "\n" if lines else ""

    def start_http_server(self, host: str = "0.0.0.0", port: int = DEFAULT_PORT) -> ThreadingHTTPServer:
        """Serve the metrics over HTTP in a background thread; returns the server."""
        metrics = self

        class _Handler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:  # noqa: N802
                body = metrics.render().encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "text/plain; version=0.0.4")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args) -> None:  # noqa: A002
                log.debug(format, *args)

        server = ThreadingHTTPServer((host, port), _Handler)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        log.info("Metrics server listening on %s:%d", host, server.server_address[1])
        return server