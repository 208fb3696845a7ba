"""The authorization check: request to resource, action, cached or evaluated decision."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from .auth_cache import AuthorizationCache, Decision
from .patterns import ResourceMappingError, ResourcePath
from .request_context import (
    AuthorizationContext,
    EntityItem,
    build_entities,
    create_authorization_context,
    parse_query_params,
    redact_check_request,
)
from .resource_mapper import ResourceMapper, global_mapper
from .telemetry import Metrics

log = logging.getLogger(__name__)


class StatusCode(enum.IntEnum):
    """The gRPC status codes a check can answer with."""

    OK = 0
    INVALID_ARGUMENT = 3
    PERMISSION_DENIED = 7
    INTERNAL = 13
    UNAUTHENTICATED = 16


@dataclass(frozen=True)
class CheckResult:
    """The outcome of a check: a status code and its message."""

    code: StatusCode
    message: str

    @property
    def allowed(self) -> bool:
        """Whether the request may go ahead."""
        return self.code is StatusCode.OK


@dataclass
class EvaluationResult:
    """What the policy engine answered for one request."""

    decision: Decision
    errors: list[str] = field(default_factory=list)

    @property
    def diagnostics(self) -> Optional[str]:
        """The evaluation errors joined with ``; ``, or None if there were none."""
        if not self.errors:
            return None
        return "; ".join(error or "Unknown error" for error in self.errors)


Evaluator = Callable[[AuthorizationContext, Optional[list[EntityItem]]], EvaluationResult]


def build_check_result(decision: Decision, diagnostics: Optional[str] = None) -> CheckResult:
    """Turn a decision into the status returned to the proxy."""
    if decision is Decision.ALLOW:
        return CheckResult(StatusCode.OK, "Request authorized")
    message = "Request not authorized"
    if diagnostics:
        message = f"{message}: {diagnostics}"
    return CheckResult(StatusCode.PERMISSION_DENIED, message)


class Authorizer:
    """Answers check requests from the cache or by calling the policy evaluator.

    ``evaluate`` is called with the authorization context and the entity
    list of the resource hierarchy (or None) and returns an
    :class:`EvaluationResult`. Exceptions it raises propagate to the caller
    and nothing is cached.
    """

    def __init__(
        self,
        cache: AuthorizationCache,
        evaluate: Evaluator,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self.cache = cache
        self.evaluate = evaluate
        self.metrics = metrics if metrics is not None else Metrics()

    def authorize(
        self,
        context: AuthorizationContext,
        resource_info: ResourcePath,
        method: str,
        path: str,
    ) -> CheckResult:
        """Decide on a prepared context, using the cache when it holds an answer."""
        cached = self.cache.get(
            context.principal, context.action, context.resource, context.context_hash
        )
        if cached is not None:
            self.metrics.record_cache_hit()
            decision, diagnostics = cached
            from_cache = True
        else:
            self.metrics.record_cache_miss()
            entities = build_entities(
                resource_info, context.resource_entity_id, context.resource_entity_type
            )
            with self.metrics.time_avp_request():
                result = self.evaluate(context, entities)
            decision = Decision.coerce(result.decision)
            diagnostics = result.diagnostics
            log.debug("Authorization decision from evaluator: %s", decision.name)
            self.cache.put(
                context.principal,
                context.action,
                context.resource,
                context.context_hash,
                decision,
                diagnostics,
            )
            from_cache = False

        status = "allowed" if decision is Decision.ALLOW else "denied"
        summary = (
            f"principal={context.principal}, action={context.action}, "
            f"resource={context.resource}, path={path}, cached={from_cache}"
        )
        if decision is Decision.ALLOW:
            log.info("AUTHORIZATION ALLOWED: %s", summary)
        else:
            log.warning("AUTHORIZATION DENIED: %s", summary)
            if diagnostics:
                log.debug("  diagnostics: %s", diagnostics)
        self.metrics.record_request(method, resource_info.matched_pattern, status)
        return build_check_result(decision, diagnostics)

    def check(
        self,
        request: Optional[Mapping[str, Any]],
        claims: Optional[Mapping[str, Any]],
        mapper: Optional[ResourceMapper] = None,
    ) -> CheckResult:
        """Answer a check request whose token has been validated into ``claims``.

        ``claims`` must hold the subject under ``sub``; None means the token
        was missing or invalid.
        """
        with self.metrics.time_check_request():
            log.debug("Received request: %s", redact_check_request(request))

            attributes = (request or {}).get("attributes")
            if attributes is None:
                log.warning("Request has no attributes")
                return CheckResult(StatusCode.UNAUTHENTICATED, "No request attributes provided")

            http = (attributes.get("request") or {}).get("http")
            if http is None:
                log.warning("Request has no HTTP information")
                return CheckResult(StatusCode.UNAUTHENTICATED, "No HTTP information provided")

            path = http.get("path", "")
            method = http.get("method", "")
            query_params = parse_query_params(path)
            headers = {k.lower(): v for k, v in (http.get("headers") or {}).items()}

            if claims is None or "sub" not in claims:
                return CheckResult(StatusCode.UNAUTHENTICATED, "Missing or invalid token")
            subject = str(claims["sub"])
            extra_claims = {k: v for k, v in claims.items() if k != "sub"}

            mapper = mapper if mapper is not None else global_mapper()
            try:
                resource_info = mapper.parse_path(path)
            except ResourceMappingError as exc:
                log.warning("Failed to parse path %r: %s", path, exc)
                return CheckResult(StatusCode.INVALID_ARGUMENT, f"Invalid resource path: {exc}")

            action = mapper.map_method_to_action(method, path, resource_info)
            context = create_authorization_context(
                subject, action, method, path, resource_info, query_params, headers, extra_claims
            )
            return self.authorize(context, resource_info, method, path)