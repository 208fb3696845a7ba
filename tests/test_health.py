from avpauthz.health import HealthService, ServingStatus


def test_check_reports_serving():
    assert HealthService().check(None) is ServingStatus.SERVING


def test_check_ignores_request_contents():
    service = HealthService()
    assert service.check({"service": "anything"}) == service.check(None)


def test_watch_yields_one_serving_status():
    assert list(HealthService().watch(None)) == [ServingStatus.SERVING]


def test_serving_status_wire_values():
    status = HealthService().check(None)
    assert int(status) == 1
    assert [int(s) for s in HealthService().watch(None)] == [1]
    assert int(ServingStatus.NOT_SERVING) == 2