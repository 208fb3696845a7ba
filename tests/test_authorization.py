import pytest

from avpauthz.auth_cache import AuthorizationCache, Decision
from avpauthz.authorization import (
    Authorizer,
    CheckResult,
    EvaluationResult,
    StatusCode,
    build_check_result,
)
from avpauthz.request_context import EntityIdentifier
from avpauthz.resource_mapper import create_default_resource_mapper
from avpauthz.telemetry import (
    AVP_REQUESTS_TOTAL,
    CACHE_HITS,
    CACHE_MISSES,
    CHECK_REQUEST_DURATION_SECONDS,
    AVP_REQUEST_DURATION_SECONDS,
    Metrics,
)


class FakeEvaluator:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def __call__(self, context, entities):
        self.calls.append((context, entities))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def make_request(method="GET", path="/api/v1/photos/3", headers=None):
    return {
        "attributes": {
            "request": {
                "http": {
                    "method": method,
                    "path": path,
                    "headers": headers if headers is not None else {"Authorization": "Bearer token"},
                }
            }
        }
    }


def make_authorizer(result):
    evaluator = FakeEvaluator(result)
    metrics = Metrics()
    authorizer = Authorizer(AuthorizationCache(60, 100), evaluator, metrics)
    return authorizer, evaluator, metrics


CLAIMS = {"sub": "alice", "email": "alice@example.com"}


def test_build_check_result_allow():
    assert build_check_result(Decision.ALLOW) == CheckResult(StatusCode.OK, "Request authorized")


def test_build_check_result_deny_without_diagnostics():
    result = build_check_result(Decision.DENY, None)
    assert result.code is StatusCode.PERMISSION_DENIED
    assert result.message == "Request not authorized"
    assert not result.allowed


def test_build_check_result_deny_with_diagnostics():
    result = build_check_result(Decision.DENY, "policy error")
    assert result.message == "Request not authorized: policy error"


def test_evaluation_diagnostics_join_and_unknown():
    assert EvaluationResult(Decision.DENY, ["a", ""]).diagnostics == "a; Unknown error"
    assert EvaluationResult(Decision.ALLOW).diagnostics is None


def test_allowed_request_records_metrics_and_context():
    authorizer, evaluator, metrics = make_authorizer(EvaluationResult(Decision.ALLOW))
    mapper = create_default_resource_mapper()
    result = authorizer.check(make_request(), CLAIMS, mapper)
    assert result.allowed
    assert result.code is StatusCode.OK
    context, entities = evaluator.calls[0]
    assert context.principal == "User::alice"
    assert (context.action_type, context.action_id) == ("Action", "read")
    assert context.resource == "photos::3"
    assert context.context_pairs["jwt_email"] == "alice@example.com"
    assert "jwt_sub" not in context.context_pairs
    assert entities is None
    assert metrics.counter(
        AVP_REQUESTS_TOTAL, method="GET", path="{resource}/{id}", status="allowed"
    ) == 1
    assert metrics.counter(CACHE_MISSES) == 1
    assert len(metrics.observations(CHECK_REQUEST_DURATION_SECONDS)) == 1
    assert len(metrics.observations(AVP_REQUEST_DURATION_SECONDS)) == 1


def test_second_request_is_served_from_cache():
    authorizer, evaluator, metrics = make_authorizer(EvaluationResult(Decision.ALLOW))
    mapper = create_default_resource_mapper()
    first = authorizer.check(make_request(), CLAIMS, mapper)
    second = authorizer.check(make_request(), CLAIMS, mapper)
    assert first == second
    assert len(evaluator.calls) == 1
    assert metrics.counter(CACHE_HITS) == 1
    assert metrics.counter(CACHE_MISSES) == 1


def test_denied_request_carries_diagnostics_and_caches_them():
    authorizer, evaluator, metrics = make_authorizer(
        EvaluationResult(Decision.DENY, ["first", "second"])
    )
    mapper = create_default_resource_mapper()
    result = authorizer.check(make_request(method="DELETE"), CLAIMS, mapper)
    assert result.code is StatusCode.PERMISSION_DENIED
    assert result.message == "Request not authorized: first; second"
    again = authorizer.check(make_request(method="DELETE"), CLAIMS, mapper)
    assert again == result
    assert len(evaluator.calls) == 1
    assert metrics.counter(
        AVP_REQUESTS_TOTAL, method="DELETE", path="{resource}/{id}", status="denied"
    ) == 2


def test_nested_resource_passes_entities():
    authorizer, evaluator, _ = make_authorizer(EvaluationResult(Decision.ALLOW))
    mapper = create_default_resource_mapper()
    authorizer.check(make_request(path="/api/v1/albums/7/photos/3"), CLAIMS, mapper)
    context, entities = evaluator.calls[0]
    assert context.resource == "photos::3"
    assert [item.identifier for item in entities] == [
        EntityIdentifier("albums", "7"),
        EntityIdentifier("photos", "3"),
    ]
    assert entities[-1].parents == [EntityIdentifier("albums", "7")]


def test_missing_attributes():
    authorizer, evaluator, _ = make_authorizer(EvaluationResult(Decision.ALLOW))
    result = authorizer.check({}, CLAIMS, create_default_resource_mapper())
    assert result == CheckResult(StatusCode.UNAUTHENTICATED, "No request attributes provided")
    assert evaluator.calls == []


def test_missing_http():
    authorizer, _, _ = make_authorizer(EvaluationResult(Decision.ALLOW))
    result = authorizer.check({"attributes": {"request": {}}}, CLAIMS, create_default_resource_mapper())
    assert result == CheckResult(StatusCode.UNAUTHENTICATED, "No HTTP information provided")


def test_missing_claims_is_unauthenticated():
    authorizer, evaluator, _ = make_authorizer(EvaluationResult(Decision.ALLOW))
    result = authorizer.check(make_request(), None, create_default_resource_mapper())
    assert result.code is StatusCode.UNAUTHENTICATED
    assert evaluator.calls == []


def test_unsupported_path_is_invalid_argument():
    authorizer, evaluator, _ = make_authorizer(EvaluationResult(Decision.ALLOW))
    result = authorizer.check(
        make_request(path="/api/v1/a/b/c/d/e"), CLAIMS, create_default_resource_mapper()
    )
    assert result.code is StatusCode.INVALID_ARGUMENT
    assert result.message.startswith("Invalid resource path: ")
    assert "a/b/c/d/e" in result.message
    assert evaluator.calls == []


def test_evaluator_error_propagates_and_is_not_cached():
    authorizer, evaluator, _ = make_authorizer(RuntimeError("service down"))
    mapper = create_default_resource_mapper()
    with pytest.raises(RuntimeError, match="service down"):
        authorizer.check(make_request(), CLAIMS, mapper)
    assert len(authorizer.cache) == 0


def test_custom_action_mapping_reaches_evaluator():
    authorizer, evaluator, _ = make_authorizer(EvaluationResult(Decision.ALLOW))
    mapper = create_default_resource_mapper()
    authorizer.check(make_request(method="POST", path="/api/v1/posts/9/publish"), CLAIMS, mapper)
    context, _ = evaluator.calls[0]
    assert (context.action_type, context.action_id) == ("Action", "publish")