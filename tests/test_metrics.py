from fastapi.testclient import TestClient

from vsphere_fleet.main import app
from vsphere_fleet.metrics import FLEET_COUNTERS, Metrics, metrics


def test_metrics_endpoint_exposes_counters():
    metrics.inc("provision_attempts_total", 2)
    client = TestClient(app)
    response = client.get("/metrics")
    assert response.status_code == 200
    body = response.json()
    assert body["provision_attempts_total"] >= 2


def test_fleet_counters_reported_before_first_event():
    metrics.reset()
    client = TestClient(app)
    body = client.get("/metrics").json()
    assert set(FLEET_COUNTERS) <= set(body)
    assert all(body[name] == 0 for name in FLEET_COUNTERS)


def test_counter_reset():
    counters = Metrics(known=("teardown_failed_total",))
    counters.inc("teardown_failed_total")
    counters.inc("adhoc_total")
    assert counters.get("teardown_failed_total") == 1
    counters.reset()
    assert counters.snapshot() == {"teardown_failed_total": 0}
