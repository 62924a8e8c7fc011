import threading
from typing import Any, cast

import pytest

from tests.fakes import FakeVCenter, make_settings
from vsphere_fleet.config import ProviderSettings
from vsphere_fleet.controller import InstanceGroup
from vsphere_fleet.errors import (
    AddressNotReady,
    FleetError,
    LookupFailure,
    OperationCancelled,
    PartialTeardownError,
)
from vsphere_fleet.models import POWERED_OFF, InstanceState


def _group(**overrides) -> tuple[InstanceGroup, FakeVCenter]:
    vcenter = FakeVCenter()
    group = InstanceGroup(make_settings(**overrides), lambda _s: cast(Any, vcenter))
    group.init(ProviderSettings(connector_config={"username": "ci"}))
    return group, vcenter


def _observed(group: InstanceGroup) -> dict[str, InstanceState]:
    seen: dict[str, InstanceState] = {}
    group.update(lambda name, state: seen.__setitem__(name, state))
    return seen


def test_full_lifecycle_of_one_instance():
    group, vcenter = _group()
    assert group.increase(1) == 1

    seen = _observed(group)
    assert len(seen) == 1
    name = next(iter(seen))
    assert name.startswith("test-vm-")
    assert seen[name] is InstanceState.CREATING

    with pytest.raises(AddressNotReady):
        group.connect_info(name)

    vcenter.set_guest_ip(name, "10.0.0.5")
    assert _observed(group)[name] is InstanceState.RUNNING
    info = group.connect_info(name)
    assert info.internal_addr == "10.0.0.5"
    assert info.connector_config == {"username": "ci"}

    assert group.decrease([name]) == [name]
    assert _observed(group) == {}


def test_update_ignores_vms_outside_the_prefix():
    group, vcenter = _group()
    vcenter.add_vm("/DC0/vm", "test-vm-a")
    vcenter.add_vm("/DC0/vm", "other-vm")
    vcenter.add_vm("/DC0/vm", "test-vm-b", power_state=POWERED_OFF)
    assert _observed(group) == {
        "test-vm-a": InstanceState.CREATING,
        "test-vm-b": InstanceState.DELETING,
    }


def test_update_reports_nothing_for_empty_folder():
    group, _ = _group()
    assert _observed(group) == {}


def test_increase_with_missing_template_is_lookup_failure():
    group, vcenter = _group(template="missing-template")
    with pytest.raises(LookupFailure):
        group.increase(1)
    assert not any(call[0] == "clone" for call in vcenter.calls)


def test_increase_with_missing_folder_is_lookup_failure():
    group, _ = _group(folder="/DC0/vm/nowhere")
    with pytest.raises(LookupFailure):
        group.increase(2)


def test_increase_reports_request_count_even_when_clones_fail():
    group, vcenter = _group()
    vcenter.failing_clones = 1
    assert group.increase(3) == 3
    assert len(_observed(group)) == 2


def test_increase_zero_does_nothing():
    group, vcenter = _group()
    assert group.increase(0) == 0
    assert vcenter.calls == []


def test_increase_negative_is_rejected():
    group, _ = _group()
    with pytest.raises(ValueError):
        group.increase(-1)


def test_increase_with_instant_clone():
    group, vcenter = _group(deploy_type="instant-clone")
    group.increase(2)
    assert [call[0] for call in vcenter.calls] == ["instant_clone", "instant_clone"]
    assert len(_observed(group)) == 2


def test_increase_with_library_deploy():
    group, vcenter = _group(deploy_type="librarydeploy")
    group.increase(1)
    assert len(vcenter.library.deployed) == 1
    assert len(_observed(group)) == 1


def test_decrease_twice_fails_on_second_call():
    group, _ = _group()
    group.increase(1)
    name = next(iter(_observed(group)))
    group.decrease([name])
    with pytest.raises(PartialTeardownError) as excinfo:
        group.decrease([name])
    assert isinstance(excinfo.value.__cause__, LookupFailure)
    assert excinfo.value.processed == []


def test_await_ready_returns_once_address_appears():
    group, vcenter = _group()
    vcenter.add_vm("/DC0/vm", "test-vm-a")
    timer = threading.Timer(0.05, vcenter.set_guest_ip, args=("test-vm-a", "10.0.0.9"))
    timer.start()
    try:
        info = group.await_ready("test-vm-a", timeout_sec=5)
    finally:
        timer.cancel()
    assert info.internal_addr == "10.0.0.9"


def test_cancelled_update_raises():
    group, _ = _group()
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(OperationCancelled):
        group.update(lambda _n, _s: None, cancel=cancel)


def test_operations_before_init_fail():
    group = InstanceGroup(make_settings(), lambda _s: cast(Any, FakeVCenter()))
    with pytest.raises(FleetError, match="not initialized"):
        group.increase(1)


def test_shutdown_closes_session_once():
    group, vcenter = _group()
    group.shutdown()
    assert vcenter.closed
    assert not group.initialized
    group.shutdown()
