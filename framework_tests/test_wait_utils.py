import math

import pytest

from vsphere_e2e_tests.utils import exceptions
from vsphere_e2e_tests.utils import object_store
from vsphere_e2e_tests.utils import wait_utils

TIMEOUT = 30
INTERVAL = 5


class Poller:
    """Fetch function that returns the number of calls, optionally failing the first calls."""

    def __init__(self, fail_first: int = 0) -> None:
        self.calls = 0
        self.fail_first = fail_first

    def __call__(self) -> int:
        self.calls += 1
        if self.calls <= self.fail_first:
            msg = "object not found"
            raise object_store.NotFoundError(msg)
        return self.calls


@pytest.mark.parametrize("ready_after", (1, 2, 3, 6))
def test_ready_before_timeout(fake_clock, ready_after: int):
    poller = Poller()
    result = wait_utils.wait_for(
        fetch_func=poller,
        check_func=lambda n: n >= ready_after,
        desc="test object",
        timeout=TIMEOUT,
        interval=INTERVAL,
    )

    assert result == ready_after
    assert poller.calls == ready_after
    assert fake_clock.now < TIMEOUT
    assert fake_clock.sleeps == [INTERVAL] * (ready_after - 1)


def test_never_ready(fake_clock):
    poller = Poller()
    with pytest.raises(exceptions.ReadinessTimeout) as excinfo:
        wait_utils.wait_for(
            fetch_func=poller,
            check_func=lambda n: False,
            desc="EnvVar default/foo",
            timeout=TIMEOUT,
            interval=INTERVAL,
        )

    assert poller.calls >= TIMEOUT / INTERVAL
    assert fake_clock.now >= TIMEOUT
    assert "EnvVar default/foo" in str(excinfo.value)
    assert excinfo.value.__cause__ is None


def test_min_attempts_when_sleep_overshoots(fake_clock):
    """Polls are not skipped when each sleep takes longer than requested."""
    fake_clock.sleep_factor = 4

    poller = Poller()
    with pytest.raises(exceptions.ReadinessTimeout):
        wait_utils.wait_for(
            fetch_func=poller,
            check_func=lambda n: False,
            desc="test object",
            timeout=TIMEOUT,
            interval=INTERVAL,
        )

    assert poller.calls >= math.ceil(TIMEOUT / INTERVAL)


def test_fetch_errors_tolerated():
    poller = Poller(fail_first=3)
    result = wait_utils.wait_for(
        fetch_func=poller,
        check_func=lambda n: True,
        desc="test object",
        timeout=TIMEOUT,
        interval=INTERVAL,
    )

    assert result == 4


def test_fetch_errors_until_timeout():
    poller = Poller(fail_first=1000)
    with pytest.raises(exceptions.ReadinessTimeout) as excinfo:
        wait_utils.wait_for(
            fetch_func=poller,
            check_func=lambda n: True,
            desc="test object",
            timeout=TIMEOUT,
            interval=INTERVAL,
        )

    assert isinstance(excinfo.value.__cause__, object_store.NotFoundError)
    assert poller.calls >= TIMEOUT / INTERVAL


def test_provision_and_await(store):
    obj = object_store.KubeObject(
        api_version="vcsim.infrastructure.cluster.x-k8s.io/v1alpha1",
        kind="VMOperatorDependencies",
        namespace="ns1",
        name="vcsim",
    )
    ready_obj = wait_utils.provision_and_await(
        store=store,
        obj=obj,
        check_func=lambda o: o.status.get("ready") is True,
        timeout=TIMEOUT,
        interval=INTERVAL,
    )

    assert ready_obj.status == {"ready": True}
    assert store.created == [obj.ref]
    assert store.reads[obj.ref] == store.delay + 1


def test_provision_and_await_create_fails(store):
    obj = object_store.KubeObject(
        api_version="v1", kind="VMOperatorDependencies", namespace="ns1", name="vcsim"
    )
    store.create(obj)

    with pytest.raises(object_store.ObjectStoreError):
        wait_utils.provision_and_await(
            store=store,
            obj=obj,
            check_func=lambda o: True,
            timeout=TIMEOUT,
            interval=INTERVAL,
        )

    assert obj.ref not in store.reads


def test_provision_and_await_timeout(store):
    store.stuck_kinds.add("VMOperatorDependencies")
    obj = object_store.KubeObject(
        api_version="v1", kind="VMOperatorDependencies", namespace="ns1", name="vcsim"
    )

    with pytest.raises(exceptions.ReadinessTimeout) as excinfo:
        wait_utils.provision_and_await(
            store=store,
            obj=obj,
            check_func=lambda o: o.status.get("ready") is True,
            timeout=TIMEOUT,
            interval=INTERVAL,
        )

    assert str(obj.ref) in str(excinfo.value)
