# avpauthz

`avpauthz` is the decision core of an external authorization service for an
HTTP proxy. It has no dependencies outside the standard library. For each
request it works out:

- **who** is asking: the principal is `User::<sub>`, where `sub` comes from
  claims that the caller has already validated;
- **what** is being accessed: the request path is mapped to a resource type, an
  optional resource id and a list of parent resources;
- **how** it is being accessed: the HTTP method, or a custom mapping for the
  path, gives a policy action such as `Action::"read"`;
- **in what context**: the method, the path, the query parameters, the
  non-transient headers, the resource details and the other token claims.

A policy evaluator that you supply then makes an allow/deny decision. Decisions
are cached per principal, action, resource and context hash. The cache has a
time-to-live and a maximum size.

## Mapping paths to resources

```python
from avpauthz.resource_mapper import create_default_resource_mapper

mapper = create_default_resource_mapper("/api/v*/")

info = mapper.parse_path("/api/v1/users/42/orders/7")
info.resource_type      # "orders"
info.resource_id        # "7"
info.parents            # [Parent(parent_type="User", parent_id="42")]
info.matched_pattern    # "users/{userId}/{resource}/{id}"

mapper.map_method_to_action("GET", "/api/v1/users/42/orders/7", info)
# 'Action::"read"'
mapper.map_method_to_action("POST", "/api/v1/articles/9/publish", info)
# 'Action::"publish"'
```

The API prefix pattern (`/api/v*/` by default) is removed before matching. In
the prefix, `*` matches any run of characters that contains no `/`. If the prefix
does not match, only the leading slashes are removed.

The built-in patterns are tried in this order, and the first match wins:

| Pattern                                 | Resource type | Id      | Parent                      |
|-----------------------------------------|---------------|---------|-----------------------------|
| `{resource}`                            | `${resource}` |         |                             |
| `{resource}/{id}`                       | `${resource}` | `${id}` |                             |
| `users/{userId}/{resource}`             | `${resource}` |         | `User` / `${userId}`        |
| `users/{userId}/{resource}/{id}`        | `${resource}` | `${id}` | `User` / `${userId}`        |
| `{parent}/{parentId}/{resource}`        | `${resource}` |         | `${parent}` / `${parentId}` |
| `{parent}/{parentId}/{resource}/{id}`   | `${resource}` | `${id}` | `${parent}` / `${parentId}` |

The default actions for methods are `GET`→`read`, `POST`→`create`,
`PUT`→`update`, `DELETE`→`delete`, `PATCH`→`patch`, `HEAD`→`read_metadata` and
`OPTIONS`→`get_permissions`. Any other method gives `access`. Method names are
case-insensitive.

The default mapper also has these custom actions:

- `batch_create` (`POST`), `batch_update` (`PUT`) and `batch_delete` (`DELETE`)
  on `{resource}/batch`;
- `publish`, `unpublish` and `archive`, each a `POST` on `{resource}/{id}/...`.

A path that matches no pattern is parsed by its segments, and only paths of one
to four segments are accepted (`avpauthz.patterns.default_parse_path`):

- `a` is resource type `a`;
- `a/1` is resource type `a` with id `1`;
- `a/1/b` is resource type `b` with parent `a` / `1`;
- `a/1/b/2` is resource type `b` with id `2` and parent `a` / `1`.

Longer paths raise `InvalidPathFormat`. `InvalidPathFormat` and
`PatternMatchFailed` are both subclasses of `ResourceMappingError`.

### Custom mappings

`ResourceMapper.from_config(path, api_prefix_pattern)` reads a JSON file. The
file's patterns and action mappings are used instead of the defaults:

```json
{
  "patterns": [
    {
      "pattern": "projects/{projectId}/tasks/{taskId}",
      "resource_type": "Task",
      "resource_id": "${taskId}",
      "parents": [{"parent_type": "Project", "parent_id": "${projectId}"}],
      "parameter_groups": {"project": "projectId"}
    }
  ],
  "action_mappings": [
    {
      "path_pattern": "projects/{projectId}/tasks/{taskId}/close",
      "mappings": {"POST": "MyApp::Action::close"}
    }
  ]
}
```

- `patterns`, `action_mappings`, and each pattern's `pattern`, `resource_type`
  and `parameter_groups` are required. `resource_id` and `parents` are optional.
- A missing field or a field of the wrong type raises `ValueError`.
- In a pattern, `{name}` captures one path segment.
- In a template, `${name}` is replaced by that capture. A name that was not
  captured is left as it is.
- A resource id that comes out empty counts as none. A parent whose type or id
  comes out empty is dropped.
- `parameter_groups` maps parameter names to capture names. The captured values
  end up in `ResourcePath.parameters`.
- A mapped action that already contains `::` is used unchanged. Any other action
  is wrapped as `Action::"<name>"`.

Mappers can also be built in code with `ResourceMapper(api_prefix_pattern)`,
`add_pattern(...)` and `add_custom_action_mapping(...)`. `pattern_count()` and
`patterns_info()` describe what has been added.

For a mapper shared by the whole process, call
`avpauthz.resource_mapper.initialize(config_path, api_prefix_pattern)` once at
start-up. Pass `None` as `config_path` to use the defaults. After that,
`global_mapper()` returns that mapper. Until `initialize` is called,
`global_mapper()` returns a mapper with no patterns, so every path goes through
the segment parsing above.

## Deciding a request

```python
from avpauthz.auth_cache import AuthorizationCache, Decision
from avpauthz.authorization import Authorizer, EvaluationResult
from avpauthz.resource_mapper import create_default_resource_mapper

def evaluate(context, entities):
    allowed = context.action_id == "read"
    return EvaluationResult(Decision.ALLOW if allowed else Decision.DENY)

authorizer = Authorizer(AuthorizationCache(ttl=60, max_size=10_000), evaluate)

request = {
    "attributes": {
        "request": {
            "http": {
                "method": "GET",
                "path": "/api/v1/orders/7",
                "headers": {"authorization": "Bearer token"},
            }
        }
    }
}
result = authorizer.check(request, {"sub": "alice"}, create_default_resource_mapper())
result.code      # StatusCode.OK
result.allowed   # True
```

`Authorizer(cache, evaluate, metrics=None)` creates a new `Metrics` instance when
none is given.

`Authorizer.check(request, claims, mapper=None)` takes a check request given as
nested mappings, plus the validated token claims. When `mapper` is `None`, it
uses `global_mapper()`. It returns a `CheckResult` with a `StatusCode` and a
message:

| Situation                                 | Code                | Message                                          |
|-------------------------------------------|---------------------|--------------------------------------------------|
| Request allowed                           | `OK`                | `Request authorized`                             |
| Request denied                            | `PERMISSION_DENIED` | `Request not authorized`, plus `: <diagnostics>` when there are diagnostics |
| No request attributes                     | `UNAUTHENTICATED`   | `No request attributes provided`                 |
| No HTTP information                       | `UNAUTHENTICATED`   | `No HTTP information provided`                   |
| `claims` is `None` or has no `sub`        | `UNAUTHENTICATED`   | `Missing or invalid token`                       |
| Path cannot be mapped                     | `INVALID_ARGUMENT`  | `Invalid resource path: ...`                     |

The evaluator receives two arguments:

- an `AuthorizationContext`, with the fields `principal`, `action_type`,
  `action_id`, `resource_entity_type`, `resource_entity_id`, `context_pairs` and
  `context_hash`, and the properties `action` and `resource`;
- the resource hierarchy as a list of `EntityItem`, or `None` when the resource
  has no parents.

It returns an `EvaluationResult(decision, errors)`:

- A decision that is not `Decision.ALLOW`, or the string `"allow"` in any case,
  counts as a deny.
- The errors are joined with `; ` to form the diagnostics. An empty error becomes
  `Unknown error`.
- If the evaluator raises, the exception reaches the caller and nothing is
  cached.

`Authorizer.authorize(context, resource_info, method, path)` decides on a context
that has already been prepared.

The helpers in `avpauthz.request_context` are:

- `parse_action_string`: `Action::"read"` gives `("Action", "read")`.
  `Ns::Action::read` is split at the last `::`. Anything else becomes an id of
  type `Action`.
- `parse_query_params`: returns the decoded query parameters of a path or URL.
- `build_context_map`: builds the context. Headers whose names contain
  `x-request-id`, `x-b3-traceid`, `x-b3-spanid`, `x-b3-parentspanid` or
  `x-envoy-attempt-count` are left out. The remaining headers become
  `header_<name>`, lower-case and with `-` replaced by `_`. Query parameters
  become `query_<name>`, parents become `parent_<n>_type` and `parent_<n>_id`,
  and claims other than `sub` become `jwt_<name>`.
- `create_authorization_context`: builds the whole `AuthorizationContext`.
- `build_entities`: builds the entity list for the resource hierarchy.
- `redact_check_request`: returns a log-safe summary. Only the first 8
  characters of the authorization header are kept.

## Decisions and caching

`avpauthz.auth_cache.AuthorizationCache(ttl, max_size)` stores
`Decision.ALLOW` or `Decision.DENY` together with optional diagnostics.

- `ttl` is given in seconds or as a `timedelta`.
- Entries are keyed by principal, action, resource and a `ContextHash`.
- `AuthorizationCache.hash_context` computes the `ContextHash`: a SHA-256 of the
  context sorted by key, printed as lower-case hex.
- `get` returns `(decision, diagnostics)`, or `None` if the entry is missing or
  has expired.
- `put` stores a decision. When the cache is full, `put` first drops all expired
  entries. If none have expired, it drops the `max_size // 10` entries that
  expire soonest.

## Metrics and health

`avpauthz.telemetry.Metrics` counts the following:

- authorization outcomes by method, matched pattern and status:
  `avp_requests_total`;
- cache hits and misses: `avp_cache_hits_total` and `avp_cache_misses_total`;
- token validations: `jwt_validation_total` and `jwt_validation_failures`;
- key-set refreshes: `jwks_refresh_total` and `jwks_refresh_failures`.

`time_check_request()` and `time_avp_request()` are context managers. They record
durations in `check_request_duration_seconds` and `avp_request_duration_seconds`.

You can read the metrics back in three ways:

- `counter(name, **labels)` returns the value of one counter;
- `observations(name)` returns the recorded durations;
- `render()` returns everything in the Prometheus text format.

`start_http_server(host="0.0.0.0", port=9000)` serves that text in a background
thread and returns the server.

`avpauthz.health.HealthService` always reports `ServingStatus.SERVING`. `check`
returns it, and `watch` yields it once and then ends.

## What this package does not do

- **No command or server.** The package has no command-line entry point and no
  gRPC server for the proxy. You wire `Authorizer.check` into whatever transport
  you use.
- **No token validation.** The package does not fetch key sets and does not
  verify token signatures, issuers or audiences. `check` expects claims that
  have already been validated. `record_jwt_validation` and
  `record_jwks_refresh` only count events that you report.
- **No policy store client.** The package never calls a policy service. The
  decision always comes from the `evaluate` callable that you pass to
  `Authorizer`.