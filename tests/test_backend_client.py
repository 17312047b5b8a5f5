import pytest
import requests

from thermoband.client.backend import BackendClient, BackoffPolicy, FetchError, RemoteRegistry
from thermoband.errors import ConflictError, NotBoundError
from thermoband.registry.lifecycle import DeviceLifecycleManager
from thermoband.registry.models import BindingState
from thermoband.security.credentials import Credential

CRED = Credential(token="tok", subject="ward-7")
MAC = "AA:BB:CC:00:00:01"


class FakeResponse:
    def __init__(self, status_code, body=None, url="http://backend/x"):
        self.status_code = status_code
        self._body = body
        self.url = url
        self.reason = "reason"

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


class FakeSession:
    """Replays scripted responses per (method, path) and records calls."""

    def __init__(self, routes):
        self.routes = {k: list(v) for k, v in routes.items()}
        self.calls = []

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        path = url.replace("http://backend", "")
        self.calls.append((method, path, headers, kwargs.get("json")))
        outcome = self.routes[(method, path)].pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _make_client(routes):
    session = FakeSession(routes)
    return BackendClient("http://backend/", backoff=BackoffPolicy(base=0.0, max_retries=2), session=session), session


def test_get_retries_server_errors_then_succeeds():
    client, session = _make_client(
        {("GET", "/patients"): [FakeResponse(503), FakeResponse(200, [{"patientId": "1", "name": "Ana", "age": 70}])]}
    )
    patients = client.fetch_patients(CRED)
    assert [p.name for p in patients] == ["Ana"]
    assert len(session.calls) == 2
    assert session.calls[0][2] == {"Authorization": "Bearer tok"}


def test_failed_fetch_is_not_an_empty_result():
    client, _ = _make_client(
        {("GET", "/temperatures"): [requests.ConnectionError("down")] * 3}
    )
    with pytest.raises(FetchError):
        client.fetch_temperatures(CRED)

    client, _ = _make_client({("GET", "/temperatures"): [FakeResponse(200, [])]})
    assert client.fetch_temperatures(CRED) == []

    client, _ = _make_client({("GET", "/temperatures"): [FakeResponse(200, {"rows": []})]})
    with pytest.raises(FetchError):
        client.fetch_temperatures(CRED)


def test_error_codes_map_back_to_typed_errors():
    client, session = _make_client(
        {
            ("POST", "/patients/assign-device"): [
                FakeResponse(409, {"error": "Device already bound", "code": "conflict"})
            ],
            ("POST", f"/devices/{MAC}/interval"): [FakeResponse(409, {"error": "not bound", "code": "not_bound"})],
            ("POST", f"/devices/{MAC}/reset"): [FakeResponse(500, {"error": "boom"})],
        }
    )
    registry = RemoteRegistry(client)
    with pytest.raises(ConflictError):
        registry.bind("2", MAC, credential=CRED)
    with pytest.raises(NotBoundError):
        registry.configure_interval(MAC, 300, credential=CRED)
    with pytest.raises(FetchError):
        registry.release(MAC, credential=CRED)
    # writes are not retried
    assert [c[0] for c in session.calls] == ["POST", "POST", "POST"]

    with pytest.raises(ValueError):
        registry.bind("2", MAC)


def test_lifecycle_over_remote_registry():
    unbound = {"patientId": "1", "macAddress": None, "sampleIntervalSeconds": None, "state": "unbound"}
    bound = {"patientId": "1", "macAddress": MAC, "sampleIntervalSeconds": None, "state": "bound_no_interval"}
    client, session = _make_client(
        {
            ("GET", "/devicepatient/1"): [FakeResponse(200, unbound)],
            ("GET", "/devices/unassigned"): [FakeResponse(200, [{"macAddress": MAC}])],
            ("POST", "/patients/assign-device"): [FakeResponse(200, bound)],
        }
    )
    manager = DeviceLifecycleManager(RemoteRegistry(client))

    binding = manager.assign("1", MAC.lower(), credential=CRED)

    assert binding.state is BindingState.BOUND_NO_INTERVAL
    assert session.calls[-1][3] == {"patientId": "1", "macAddress": MAC}


def test_malformed_patient_rows_are_a_fetch_error():
    client, _ = _make_client({("GET", "/patients"): [FakeResponse(200, [{"name": "Ana", "age": 70}])]})
    with pytest.raises(FetchError):
        client.fetch_patients(CRED)

    client, _ = _make_client({("GET", "/patients"): [FakeResponse(200, [{"patientid": 3, "name": "Ana", "age": 70}])]})
    assert [p.patient_id for p in client.fetch_patients(CRED)] == ["3"]


def test_backoff_delays_are_capped():
    assert list(BackoffPolicy(base=1.0, factor=3.0, max_backoff=5.0, max_retries=4).delays()) == [1.0, 3.0, 5.0, 5.0]
