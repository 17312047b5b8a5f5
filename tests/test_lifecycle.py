import threading

import pytest

from thermoband.errors import ConflictError, InvalidIntervalError, NotBoundError, NotFoundError
from thermoband.registry.device_registry import DeviceRegistry
from thermoband.registry.lifecycle import DeviceLifecycleManager
from thermoband.registry.models import BindingState
from thermoband.security.credentials import Credential
from thermoband.utils.audit import NDJSONAuditLogger

MAC_A = "AA:BB:CC:00:00:01"
MAC_B = "AA:BB:CC:00:00:02"


def _make_manager(audit=None):
    registry = DeviceRegistry()
    p1 = registry.create_patient("Ana", 70)
    p2 = registry.create_patient("Ben", 40)
    registry.add_device(MAC_A)
    registry.add_device(MAC_B)
    return DeviceLifecycleManager(registry, audit=audit), registry, p1, p2


def _unassigned(registry):
    return {d.mac_address for d in registry.list_unassigned_devices()}


def test_assign_moves_to_bound_no_interval_and_leaves_pool():
    manager, registry, p1, _ = _make_manager()
    assert manager.state_of(p1.patient_id).state is BindingState.UNBOUND

    binding = manager.assign(p1.patient_id, "aa-bb-cc-00-00-01")
    assert binding.state is BindingState.BOUND_NO_INTERVAL
    assert binding.mac_address == MAC_A
    assert binding.sample_interval_seconds is None
    assert MAC_A not in _unassigned(registry)


def test_double_assign_conflicts_and_keeps_first_binding():
    manager, _, p1, p2 = _make_manager()
    first = manager.assign(p1.patient_id, MAC_A)

    with pytest.raises(ConflictError):
        manager.assign(p2.patient_id, MAC_A)

    assert manager.state_of(p1.patient_id) == first
    assert manager.state_of(p2.patient_id).state is BindingState.UNBOUND


def test_assign_requires_unbound_patient_and_known_ids():
    manager, _, p1, _ = _make_manager()
    manager.assign(p1.patient_id, MAC_A)
    with pytest.raises(ConflictError):
        manager.assign(p1.patient_id, MAC_B)
    with pytest.raises(NotFoundError):
        manager.assign("missing", MAC_B)
    with pytest.raises(NotFoundError):
        manager.assign(p1.patient_id, "AA:BB:CC:00:00:99")
    with pytest.raises(ValueError):
        manager.assign(p1.patient_id, "not-a-mac")


def test_set_interval_configures_and_rejects_unknown_values():
    manager, _, p1, _ = _make_manager()
    manager.assign(p1.patient_id, MAC_A)

    binding = manager.set_interval(MAC_A, 900)
    assert binding.state is BindingState.BOUND_CONFIGURED
    assert manager.set_interval(MAC_A, 3600).sample_interval_seconds == 3600

    with pytest.raises(InvalidIntervalError):
        manager.set_interval(MAC_A, 123)
    current = manager.state_of(p1.patient_id)
    assert current.sample_interval_seconds == 3600
    assert current.mac_address == MAC_A


def test_set_interval_on_unbound_device_fails():
    manager, _, _, _ = _make_manager()
    with pytest.raises(NotBoundError):
        manager.set_interval(MAC_B, 300)
    with pytest.raises(NotFoundError):
        manager.set_interval("AA:BB:CC:00:00:99", 300)


def test_reset_releases_and_is_idempotent():
    manager, registry, p1, p2 = _make_manager()
    manager.assign(p1.patient_id, MAC_A)
    manager.set_interval(MAC_A, 21600)

    released = manager.reset(MAC_A)
    assert released.state is BindingState.UNBOUND
    assert manager.state_of(p1.patient_id).sample_interval_seconds is None
    assert MAC_A in _unassigned(registry)

    assert manager.reset(MAC_A) is None

    # device is reusable by any patient
    assert manager.assign(p2.patient_id, MAC_A).patient_id == p2.patient_id


def test_delete_patient_releases_device_before_removal():
    manager, registry, p1, _ = _make_manager()
    manager.assign(p1.patient_id, MAC_A)
    calls = []
    original_release, original_remove = registry.release, registry.remove_patient

    def release(mac, credential=None):
        calls.append("release")
        return original_release(mac, credential=credential)

    def remove_patient(pid, credential=None):
        calls.append("remove_patient")
        return original_remove(pid, credential=credential)

    registry.release = release
    registry.remove_patient = remove_patient

    removed = manager.delete_patient(p1.patient_id)

    assert removed.patient_id == p1.patient_id
    assert calls == ["release", "remove_patient"]
    assert MAC_A in _unassigned(registry)
    assert p1.patient_id not in {p.patient_id for p in registry.list_patients()}
    with pytest.raises(NotFoundError):
        manager.delete_patient(p1.patient_id)


def test_delete_unbound_patient():
    manager, registry, _, p2 = _make_manager()
    manager.delete_patient(p2.patient_id)
    assert registry.get_patient(p2.patient_id) is None


def test_concurrent_assign_exactly_one_wins():
    manager, registry, _, _ = _make_manager()
    contenders = [registry.create_patient(f"p{i}", 30) for i in range(8)]
    barrier = threading.Barrier(len(contenders))
    outcomes = []

    def attempt(patient_id):
        barrier.wait()
        try:
            manager.assign(patient_id, MAC_B)
            outcomes.append("ok")
        except ConflictError:
            outcomes.append("conflict")

    threads = [threading.Thread(target=attempt, args=(p.patient_id,)) for p in contenders]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == len(contenders) - 1


def test_transitions_are_audited(tmp_path):
    audit = NDJSONAuditLogger(tmp_path / "audit.ndjson")
    manager, _, p1, _ = _make_manager(audit=audit)
    cred = Credential(token="t", subject="ward-7")

    manager.assign(p1.patient_id, MAC_A, credential=cred)
    manager.set_interval(MAC_A, 300, credential=cred)
    with pytest.raises(InvalidIntervalError):
        manager.set_interval(MAC_A, 5, credential=cred)
    manager.delete_patient(p1.patient_id, credential=cred)

    records = audit.read_all()
    assert [r.action for r in records] == ["assign", "set_interval", "reset", "delete_patient"]
    assert {r.actor for r in records} == {"ward-7"}


def test_concurrent_assign_of_different_devices_to_one_patient():
    manager, registry, p1, _ = _make_manager()
    macs = [MAC_A, MAC_B] + [registry.add_device(f"AA:BB:CC:00:01:{i:02X}").mac_address for i in range(6)]
    barrier = threading.Barrier(len(macs))
    outcomes = []

    def attempt(mac):
        barrier.wait()
        try:
            manager.assign(p1.patient_id, mac)
            outcomes.append("ok")
        except ConflictError:
            outcomes.append("conflict")

    threads = [threading.Thread(target=attempt, args=(mac,)) for mac in macs]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    winner = manager.state_of(p1.patient_id).mac_address
    assert _unassigned(registry) == set(macs) - {winner}


def test_delete_patient_racing_assign_never_strands_a_device():
    manager, registry, _, _ = _make_manager()
    for _ in range(25):
        patient = registry.create_patient("Racer", 30)
        barrier = threading.Barrier(2)
        errors = []

        def do_assign():
            barrier.wait()
            try:
                manager.assign(patient.patient_id, MAC_A)
            except NotFoundError:
                pass  # delete won
            except Exception as e:
                errors.append(e)

        def do_delete():
            barrier.wait()
            try:
                manager.delete_patient(patient.patient_id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=do_assign), threading.Thread(target=do_delete)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert registry.get_patient(patient.patient_id) is None
        assert MAC_A in _unassigned(registry)


def test_failed_write_leaves_binding_unchanged(tmp_path):
    registry = DeviceRegistry(tmp_path / "registry.json")
    patient = registry.create_patient("Ana", 70)
    registry.add_device(MAC_A)
    manager = DeviceLifecycleManager(registry)
    saved = (tmp_path / "registry.json").read_text(encoding="utf-8")

    registry.path = tmp_path / "gone" / "registry.json"
    with pytest.raises(OSError):
        manager.assign(patient.patient_id, MAC_A)

    assert manager.state_of(patient.patient_id).state is BindingState.UNBOUND
    assert _unassigned(registry) == {MAC_A}
    assert registry.binding_for_mac(MAC_A) is None
    assert (tmp_path / "registry.json").read_text(encoding="utf-8") == saved

    registry.path = tmp_path / "registry.json"
    assert manager.assign(patient.patient_id, MAC_A).mac_address == MAC_A
    registry.path = tmp_path / "gone" / "registry.json"
    with pytest.raises(OSError):
        manager.delete_patient(patient.patient_id)
    assert manager.state_of(patient.patient_id).mac_address == MAC_A
    assert registry.get_patient(patient.patient_id) is not None
