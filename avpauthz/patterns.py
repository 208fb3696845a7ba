"""Path patterns, resource descriptions and the default path parser."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping, Optional

_PARAM_RE = re.compile(r"\{([^}]+)\}")
_VARIABLE_RE = re.compile(r"\$\{([^}]+)\}")
_FALLBACK_PREFIX = "^/api/v[^/]*/"


class ResourceMappingError(Exception):
    """Base error for failures while mapping paths to resources."""

    prefix = "Resource mapping error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def __str__(self) -> str:
        return f"{self.prefix}: {self.detail}"


class InvalidPathFormat(ResourceMappingError):
    """The path does not have a shape that can be mapped."""

    prefix = "Invalid path format"


class PatternMatchFailed(ResourceMappingError):
    """A pattern could not be compiled or applied."""

    prefix = "Failed to match resource pattern"


@dataclass(frozen=True)
class Parent:
    """A parent entity of a resource."""

    parent_type: str
    parent_id: str


@dataclass
class ResourcePath:
    """The resource a request path refers to."""

    resource_type: str
    resource_id: Optional[str] = None
    parents: list[Parent] = field(default_factory=list)
    parameters: dict[str, str] = field(default_factory=dict)
    matched_pattern: str = ""


@dataclass
class ResourcePattern:
    """A path pattern with its compiled regex and resource templates."""

    pattern: str
    resource_type: str
    resource_id: Optional[str] = None
    parents: list[tuple[str, str]] = field(default_factory=list)
    parameter_groups: dict[str, str] = field(default_factory=dict)
    regex: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        source = pattern_to_regex(self.pattern)
        try:
            self.regex = re.compile(source)
        except re.error as exc:
            raise PatternMatchFailed(str(exc)) from exc
        self.parents = [(ptype, pid) for ptype, pid in self.parents]
        self.parameter_groups = dict(self.parameter_groups)


def pattern_to_regex(pattern: str) -> str:
    """Turn ``{name}`` placeholders into named groups and anchor the pattern."""
    body = _PARAM_RE.sub(r"(?P<\1>[^/]+)", pattern)
    return f"^{body}$"


def substitute_variables(template: str, captures: Mapping[str, str]) -> str:
    """Replace ``${name}`` with captured values; unknown names stay literal."""
    result = template
    for match in _VARIABLE_RE.finditer(template):
        value = captures.get(match.group(1))
        if value is not None:
            result = result.replace(match.group(0), value)
    return result


def prefix_regex(api_prefix_pattern: str) -> re.Pattern:
    """Compile a wildcard API prefix such as ``/api/v*/`` into an anchored regex."""
    body = api_prefix_pattern.replace("*", "[^/]*").replace("/", "\\/")
    try:
        return re.compile(f"^{body}")
    except re.error:
        return re.compile(_FALLBACK_PREFIX)


def strip_api_prefix(prefix: re.Pattern, path: str) -> str:
    """Remove the API prefix from a path, or its leading slashes if none matches."""
    match = prefix.search(path)
    if match is None:
        return path.lstrip("/")
    matched = match.group(0)
    return path[len(matched):] if path.startswith(matched) else path


def default_parse_path(path: str) -> ResourcePath:
    """Parse a prefix-free path of one to four segments."""
    segments = path.split("/")
    match segments:
        case [collection]:
            return ResourcePath(
                resource_type=collection,
                matched_pattern=f"default:/{collection}",
            )
        case [collection, item_id]:
            return ResourcePath(
                resource_type=collection,
                resource_id=item_id,
                matched_pattern=f"default:/{collection}/{{id}}",
            )
        case [parent_type, parent_id, collection]:
            return ResourcePath(
                resource_type=collection,
                parents=[Parent(parent_type, parent_id)],
                matched_pattern=f"default:/{parent_type}/{{id}}/{collection}",
            )
        case [parent_type, parent_id, collection, item_id]:
            return ResourcePath(
                resource_type=collection,
                resource_id=item_id,
                parents=[Parent(parent_type, parent_id)],
                matched_pattern=f"default:/{parent_type}/{{id}}/{collection}/{{id}}",
            )
        case _:
            raise InvalidPathFormat(f"Path format not supported: {path}")