"""Mapping of HTTP paths and methods onto Cedar resources and actions."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from .patterns import (
    Parent,
    ResourcePath,
    ResourcePattern,
    default_parse_path,
    pattern_to_regex,
    prefix_regex,
    strip_api_prefix,
    substitute_variables,
)

import re

log = logging.getLogger(__name__)

DEFAULT_API_PREFIX = "/api/v*/"

_DEFAULT_ACTIONS = {
    "GET": "read",
    "POST": "create",
    "PUT": "update",
    "DELETE": "delete",
    "PATCH": "patch",
    "HEAD": "read_metadata",
    "OPTIONS": "get_permissions",
}

_FALLBACK_ACTION = "access"


@dataclass
class _ActionMapping:
    regex: re.Pattern
    actions: dict[str, str]


def _format_action(action: str) -> str:
    return action if "::" in action else f'Action::"{action}"'


class ResourceMapper:
    """Maps request paths to resources and HTTP methods to actions."""

    def __init__(self, api_prefix_pattern: str = DEFAULT_API_PREFIX) -> None:
        self._patterns: list[ResourcePattern] = []
        self._action_mappings: list[_ActionMapping] = []
        self._default_actions = dict(_DEFAULT_ACTIONS)
        self._api_prefix = prefix_regex(api_prefix_pattern)

    @classmethod
    def from_config(
        cls,
        config_path: Union[str, Path],
        api_prefix_pattern: str = DEFAULT_API_PREFIX,
    ) -> "ResourceMapper":
        """Build a mapper from a JSON configuration file.

        Only the patterns and action mappings of the file are used; the
        default mappings are not added.
        """
        text = Path(config_path).read_text(encoding="utf-8")
        log.debug("Resource mapping config content: %s", text)
        config = json.loads(text)
        if not isinstance(config, dict):
            raise ValueError("resource mapping configuration must be a JSON object")

        patterns = _require(config, "patterns", list)
        action_mappings = _require(config, "action_mappings", list)
        log.info(
            "Found %d patterns and %d action mappings in configuration",
            len(patterns),
            len(action_mappings),
        )

        mapper = cls(api_prefix_pattern)
        for entry in patterns:
            if not isinstance(entry, dict):
                raise ValueError("each pattern must be a JSON object")
            pattern = _require(entry, "pattern", str)
            resource_type = _require(entry, "resource_type", str)
            resource_id = _optional(entry, "resource_id", str)
            parameter_groups = _string_map(_require(entry, "parameter_groups", dict))
            raw_parents = _optional(entry, "parents", list) or []
            parents = []
            for parent in raw_parents:
                if not isinstance(parent, dict):
                    raise ValueError("each parent must be a JSON object")
                parents.append(
                    (_require(parent, "parent_type", str), _require(parent, "parent_id", str))
                )
            mapper.add_pattern(pattern, resource_type, resource_id, parents, parameter_groups)
            log.debug("Added pattern %r for resource type %r", pattern, resource_type)

        for entry in action_mappings:
            if not isinstance(entry, dict):
                raise ValueError("each action mapping must be a JSON object")
            path_pattern = _require(entry, "path_pattern", str)
            actions = _string_map(_require(entry, "mappings", dict))
            mapper.add_custom_action_mapping(path_pattern, actions)
            log.debug("Added action mapping for %r", path_pattern)

        log.debug("Resource mapper configured with %d patterns", mapper.pattern_count())
        return mapper

    def pattern_count(self) -> int:
        """Number of resource patterns."""
        return len(self._patterns)

    def patterns_info(self) -> list[str]:
        """One human-readable line per resource pattern."""
        return [
            f"'{p.pattern}' -> type: '{p.resource_type}', "
            f"resource_id: {p.resource_id!r}, parents: {p.parents!r}"
            for p in self._patterns
        ]

    def add_pattern(
        self,
        pattern: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        parents: Iterable[tuple[str, str]] = (),
        parameter_groups: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Add a resource pattern; raises PatternMatchFailed if it does not compile."""
        self._patterns.append(
            ResourcePattern(
                pattern=pattern,
                resource_type=resource_type,
                resource_id=resource_id,
                parents=list(parents),
                parameter_groups=dict(parameter_groups or {}),
            )
        )

    def add_custom_action_mapping(self, path_pattern: str, action_map: Mapping[str, str]) -> None:
        """Map methods to actions for paths that match ``path_pattern``."""
        source = pattern_to_regex(path_pattern)
        try:
            regex = re.compile(source)
        except re.error as exc:
            from .patterns import PatternMatchFailed

            raise PatternMatchFailed(str(exc)) from exc
        self._action_mappings.append(_ActionMapping(regex, dict(action_map)))

    def parse_path(self, path: str) -> ResourcePath:
        """Resolve a request path to the resource it names."""
        clean_path = strip_api_prefix(self._api_prefix, path)
        if clean_path != path:
            log.debug("Trimmed API prefix: %r -> %r", path, clean_path)

        for pattern in self._patterns:
            match = pattern.regex.search(clean_path)
            if match is not None:
                break
        else:
            log.debug("No pattern matched %r, using default parsing", clean_path)
            return default_parse_path(clean_path)

        captures = {name: value for name, value in match.groupdict().items() if value is not None}

        resource_type = substitute_variables(pattern.resource_type, captures)

        resource_id = None
        if pattern.resource_id is not None:
            resource_id = substitute_variables(pattern.resource_id, captures) or None

        parents = []
        for type_template, id_template in pattern.parents:
            parent_type = substitute_variables(type_template, captures)
            parent_id = substitute_variables(id_template, captures)
            if parent_type and parent_id:
                parents.append(Parent(parent_type, parent_id))

        parameters = {}
        for param_name, group_name in pattern.parameter_groups.items():
            value = captures.get(group_name) if group_name in pattern.regex.groupindex else None
            if value is not None:
                parameters[param_name] = value
            else:
                log.debug("No value for parameter %r from group %r", param_name, group_name)

        result = ResourcePath(
            resource_type=resource_type,
            resource_id=resource_id,
            parents=parents,
            parameters=parameters,
            matched_pattern=pattern.pattern,
        )
        log.debug("Path %r matched pattern %r: %r", clean_path, pattern.pattern, result)
        return result

    def map_method_to_action(
        self, method: str, path: str, resource_info: Optional[ResourcePath] = None
    ) -> str:
        """Return the Cedar action for an HTTP method on a path."""
        clean_path = strip_api_prefix(self._api_prefix, path)
        upper = method.upper()

        for mapping in self._action_mappings:
            if mapping.regex.search(clean_path) and upper in mapping.actions:
                return _format_action(mapping.actions[upper])

        base_action = self._default_actions.get(upper, _FALLBACK_ACTION)
        action = f'Action::"{base_action}"'
        log.debug("Mapped action: %s (method=%s, path=%s)", action, method, clean_path)
        return action


def _require(obj: Mapping[str, Any], key: str, kind: type) -> Any:
    if key not in obj:
        raise ValueError(f"missing field `{key}`")
    value = obj[key]
    if not isinstance(value, kind):
        raise ValueError(f"field `{key}` must be of type {kind.__name__}")
    return value


def _optional(obj: Mapping[str, Any], key: str, kind: type) -> Any:
    value = obj.get(key)
    if value is not None and not isinstance(value, kind):
        raise ValueError(f"field `{key}` must be of type {kind.__name__}")
    return value


def _string_map(value: Mapping[str, Any]) -> dict[str, str]:
    if not all(isinstance(v, str) for v in value.values()):
        raise ValueError("mapping values must be strings")
    return dict(value)


def create_default_resource_mapper(api_prefix_pattern: str = DEFAULT_API_PREFIX) -> ResourceMapper:
    """A mapper with the common REST patterns and action mappings."""
    log.info("Creating default resource mapper with API prefix pattern: %s", api_prefix_pattern)
    mapper = ResourceMapper(api_prefix_pattern)

    patterns = [
        ("{resource}", "${resource}", None, []),
        ("{resource}/{id}", "${resource}", "${id}", []),
        ("users/{userId}/{resource}", "${resource}", None, [("User", "${userId}")]),
        ("users/{userId}/{resource}/{id}", "${resource}", "${id}", [("User", "${userId}")]),
        ("{parent}/{parentId}/{resource}", "${resource}", None, [("${parent}", "${parentId}")]),
        (
            "{parent}/{parentId}/{resource}/{id}",
            "${resource}",
            "${id}",
            [("${parent}", "${parentId}")],
        ),
    ]
    for pattern, resource_type, resource_id, parents in patterns:
        mapper.add_pattern(pattern, resource_type, resource_id, parents, {})

    action_mappings = [
        ("{resource}/batch", {"POST": "batch_create", "PUT": "batch_update", "DELETE": "batch_delete"}),
        ("{resource}/{id}/publish", {"POST": "publish"}),
        ("{resource}/{id}/unpublish", {"POST": "unpublish"}),
        ("{resource}/{id}/archive", {"POST": "archive"}),
    ]
    for path_pattern, actions in action_mappings:
        mapper.add_custom_action_mapping(path_pattern, actions)

    return mapper


_lock = threading.Lock()
_global = ResourceMapper(DEFAULT_API_PREFIX)


def initialize(
    config_path: Optional[Union[str, Path]] = None,
    api_prefix_pattern: str = DEFAULT_API_PREFIX,
) -> ResourceMapper:
    """Install the process-wide mapper, from a config file or the defaults."""
    global _global
    if config_path is not None:
        log.info("Loading resource mapping configuration from %s", config_path)
        mapper = ResourceMapper.from_config(config_path, api_prefix_pattern)
    else:
        log.info("No resource mapping configuration file provided, using default mappings")
        mapper = create_default_resource_mapper(api_prefix_pattern)
    with _lock:
        _global = mapper
    log.info("Resource mapping initialized successfully")
    return mapper


def global_mapper() -> ResourceMapper:
    """The process-wide mapper."""
    with _lock:
        return _global