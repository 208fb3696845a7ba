"""Building the authorization context of a request: action, resource, context and entities."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional
from urllib.parse import parse_qsl, urlsplit

from .auth_cache import AuthorizationCache, ContextHash
from .patterns import ResourcePath

log = logging.getLogger(__name__)

DEFAULT_ACTION_TYPE = "Action"
_LEGACY_PREFIX = 'Action::"'

EXCLUDED_HEADERS = (
    "x-request-id",
    "x-b3-traceid",
    "x-b3-spanid",
    "x-b3-parentspanid",
    "x-envoy-attempt-count",
)


@dataclass(frozen=True)
class EntityIdentifier:
    """A typed entity reference such as ``Album::42``."""

    entity_type: str
    entity_id: str

    def __str__(self) -> str:
        return f"{self.entity_type}::{self.entity_id}"


@dataclass
class EntityItem:
    """An entity together with the entities it belongs to."""

    identifier: EntityIdentifier
    parents: list[EntityIdentifier] = field(default_factory=list)


@dataclass
class AuthorizationContext:
    """Everything needed to look up or evaluate one authorization decision."""

    principal: str
    action_type: str
    action_id: str
    resource_entity_id: str
    resource_entity_type: str
    context_pairs: dict[str, Any]
    context_hash: ContextHash

    @property
    def action(self) -> str:
        """The action as ``type::id``."""
        return f"{self.action_type}::{self.action_id}"

    @property
    def resource(self) -> str:
        """The resource as ``type::id``."""
        return f"{self.resource_entity_type}::{self.resource_entity_id}"


def _trim_start_repeated(text: str, prefix: str) -> str:
    while prefix and text.startswith(prefix):
        text = text[len(prefix):]
    return text


def parse_action_string(action: str) -> tuple[str, str]:
    """Split an action into ``(action_type, action_id)``.

    ``Action::"read"`` gives ``("Action", "read")``; ``Ns::Action::read``
    splits at the last ``::``; anything else is an id of type ``Action``.
    """
    if action.startswith(_LEGACY_PREFIX) and action.endswith('"'):
        action_id = _trim_start_repeated(action, _LEGACY_PREFIX).rstrip('"')
        return DEFAULT_ACTION_TYPE, action_id

    separator = action.rfind("::")
    if separator != -1:
        action_type = action[:separator]
        action_id = action[separator + 2:]
        if action_type and action_id:
            return action_type, action_id

    return DEFAULT_ACTION_TYPE, action


def parse_query_params(path: str) -> dict[str, str]:
    """Decoded query parameters of a request path or URL; later keys win."""
    url = path if path.startswith(("http://", "https://")) else f"http://example.com{path}"
    try:
        query = urlsplit(url).query
    except ValueError:
        return {}
    return dict(parse_qsl(query, keep_blank_values=True))


def redact_check_request(request: Optional[Mapping[str, Any]]) -> str:
    """A loggable summary of a check request with the authorization header shortened."""
    attributes = (request or {}).get("attributes")
    if not attributes:
        return "CheckRequest{ no attributes }"
    http_request = attributes.get("request")
    if not http_request:
        return "CheckRequest{ no request }"
    http = http_request.get("http")
    if not http:
        return "CheckRequest{ no http }"

    parts = [f"CheckRequest{{ method: {http.get('method', '')}, path: {http.get('path', '')}"]
    for name, value in (http.get("headers") or {}).items():
        if name.lower() == "authorization":
            safe = f"{value[:8]}..." if len(value) > 8 else "<redacted>"
            parts.append(f", {name}: {safe}")
            break
    else:
        parts.append(", no-auth")
    parts.append(" }")
    return "".join(parts)


def build_context_map(
    method: str,
    path: str,
    query_params: Mapping[str, str],
    headers: Mapping[str, str],
    resource_info: ResourcePath,
    claims: Mapping[str, Any],
) -> dict[str, Any]:
    """The context attributes sent with an authorization request.

    ``claims`` are the token claims besides the subject; each becomes
    ``jwt_<name>``. Transient tracing headers are left out.
    """
    context: dict[str, Any] = {"http_method": method, "http_path": path}

    for key, value in query_params.items():
        context[f"query_{key}"] = value

    for key, value in headers.items():
        lower = key.lower()
        if not any(excluded in lower for excluded in EXCLUDED_HEADERS):
            context[f"header_{lower.replace('-', '_')}"] = value

    context["resource_type"] = resource_info.resource_type
    if resource_info.resource_id is not None:
        context["resource_id"] = resource_info.resource_id

    for index, parent in enumerate(resource_info.parents):
        context[f"parent_{index}_type"] = parent.parent_type
        context[f"parent_{index}_id"] = parent.parent_id

    for key, value in claims.items():
        context[f"jwt_{key}"] = value

    return context


def create_authorization_context(
    subject: str,
    action: str,
    method: str,
    path: str,
    resource_info: ResourcePath,
    query_params: Mapping[str, str],
    headers: Mapping[str, str],
    claims: Mapping[str, Any],
) -> AuthorizationContext:
    """Assemble the principal, action, resource and hashed context of a request."""
    action_type, action_id = parse_action_string(action)
    log.debug("Parsed action: type=%r, id=%r from %r", action_type, action_id, action)

    resource_entity_type = resource_info.resource_type
    resource_entity_id = (
        resource_info.resource_id
        if resource_info.resource_id is not None
        else resource_info.resource_type
    )

    context_pairs = build_context_map(method, path, query_params, headers, resource_info, claims)
    context_hash = AuthorizationCache.hash_context(context_pairs)
    log.debug("Context hash for request: %s (%d context pairs)", context_hash, len(context_pairs))

    return AuthorizationContext(
        principal=f"User::{subject}",
        action_type=action_type,
        action_id=action_id,
        resource_entity_id=resource_entity_id,
        resource_entity_type=resource_entity_type,
        context_pairs=context_pairs,
        context_hash=context_hash,
    )


def build_entities(
    resource_info: ResourcePath,
    resource_entity_id: str,
    resource_entity_type: str,
) -> Optional[list[EntityItem]]:
    """Entity list describing the resource hierarchy, or None without parents."""
    if not resource_info.parents:
        return None

    parent_ids = [
        EntityIdentifier(parent.parent_type, parent.parent_id) for parent in resource_info.parents
    ]
    items = [EntityItem(identifier) for identifier in parent_ids]
    items.append(
        EntityItem(
            EntityIdentifier(resource_entity_type, resource_entity_id),
            list(parent_ids),
        )
    )
    for item in items:
        log.debug("Entity %s with parents %s", item.identifier, [str(p) for p in item.parents])
    return items