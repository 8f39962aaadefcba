import ipaddress
import itertools
import typing as tp

import pytest
from _pytest.monkeypatch import MonkeyPatch
from _pytest.tmpdir import TempPathFactory

from vsphere_e2e_tests.context_management import status_files
from vsphere_e2e_tests.utils import object_store
from vsphere_e2e_tests.utils import temptools
from vsphere_e2e_tests.utils import wait_utils

ENV_VAR_VARIABLES = {
    "VSPHERE_SERVER": "10.0.0.10",
    "VSPHERE_PASSWORD": "simulated",
    "VSPHERE_DATACENTER": "DC0",
    "VSPHERE_SSH_AUTHORIZED_KEY": "ssh-rsa simulated",
    "NAMESPACE": "vcsim-ns",
    "CLUSTER_NAME": "vcsim-cluster",
    "KUBERNETES_VERSION": "v1.30.0",
    "CONTROL_PLANE_MACHINE_COUNT": "1",
    "WORKER_MACHINE_COUNT": "1",
    "VSPHERE_TLS_THUMBPRINT": "AA:BB",
    "CONTROL_PLANE_ENDPOINT_PORT": "6443",
}


class FakeClock:
    """Replacement of the `time` module in `wait_utils`, sleeping only advances the clock."""

    def __init__(self, sleep_factor: float = 1.0) -> None:
        self.now = 0.0
        self.sleep_factor = sleep_factor
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, secs: float) -> None:
        self.sleeps.append(secs)
        self.now += secs * self.sleep_factor


class ReconcilingStore(object_store.InMemoryObjectStore):
    """In-memory object store with fake controllers.

    A controller for a kind fills in the object status once the object was read `delay` times,
    i.e. the object becomes ready only after some polls. Kinds in `stuck_kinds` are never
    reconciled, deleting kinds in `undeletable_kinds` fails.
    """

    def __init__(self, delay: int = 0) -> None:
        super().__init__()
        self.delay = delay
        self.stuck_kinds: set[str] = set()
        self.undeletable_kinds: set[str] = set()
        self.created: list[object_store.ObjectRef] = []
        self.deleted: list[object_store.ObjectRef] = []
        self.reads: dict[object_store.ObjectRef, int] = {}
        self.env_var_variables = dict(ENV_VAR_VARIABLES)
        self._ips = (str(ipaddress.ip_address("10.10.0.10") + i) for i in itertools.count())
        self._reconcilers: dict[str, tp.Callable[[object_store.KubeObject], None]] = {
            "IPAddressClaim": self._reconcile_ip_address_claim,
            "ControlPlaneEndpoint": self._reconcile_control_plane_endpoint,
            "EnvVar": self._reconcile_env_var,
            "VMOperatorDependencies": self._reconcile_dependencies,
        }

    def _reconcile_ip_address_claim(self, obj: object_store.KubeObject) -> None:
        address = object_store.KubeObject(
            api_version="ipam.cluster.x-k8s.io/v1beta1",
            kind="IPAddress",
            namespace=obj.namespace,
            name=obj.name,
            spec={"address": next(self._ips), "gateway": "10.10.0.1", "prefix": 24},
        )
        super().create(address)
        self.set_status(obj.ref, {"addressRef": {"name": address.name}})

    def _reconcile_control_plane_endpoint(self, obj: object_store.KubeObject) -> None:
        self.set_status(obj.ref, {"host": next(self._ips), "port": 6443})

    def _reconcile_env_var(self, obj: object_store.KubeObject) -> None:
        self.set_status(obj.ref, {"variables": dict(self.env_var_variables)})

    def _reconcile_dependencies(self, obj: object_store.KubeObject) -> None:
        self.set_status(obj.ref, {"ready": True})

    def create(self, obj: object_store.KubeObject) -> None:
        super().create(obj)
        self.created.append(obj.ref)

    def get(self, ref: object_store.ObjectRef) -> object_store.KubeObject:
        obj = super().get(ref)
        self.reads[ref] = self.reads.get(ref, 0) + 1
        reconciler = self._reconcilers.get(ref.kind)
        if (
            reconciler
            and not obj.status
            and ref.kind not in self.stuck_kinds
            and self.reads[ref] > self.delay
        ):
            reconciler(obj)
            obj = super().get(ref)
        return obj

    def delete(self, ref: object_store.ObjectRef) -> None:
        if ref.kind in self.undeletable_kinds:
            msg = f"Failed to delete {ref}: admission webhook denied the request"
            raise object_store.ObjectStoreError(msg)
        super().delete(ref)
        self.deleted.append(ref)

    def add_vcenter_simulator(self, name: str = "vcenter", namespace: str = "default") -> None:
        super().create(
            object_store.KubeObject(
                api_version="vcsim.infrastructure.cluster.x-k8s.io/v1alpha1",
                kind="VCenterSimulator",
                namespace=namespace,
                name=name,
            )
        )


@pytest.fixture(scope="session", autouse=True)
def init_pytest_temp_dirs(tmp_path_factory: TempPathFactory) -> None:
    """Init `PytestTempDirs`."""
    temptools.PytestTempDirs.init(tmp_path_factory=tmp_path_factory)


@pytest.fixture(autouse=True)
def fake_clock(monkeypatch: MonkeyPatch) -> FakeClock:
    """Don't really sleep while waiting for objects."""
    clock = FakeClock()
    monkeypatch.setattr(wait_utils, "time", clock)
    return clock


@pytest.fixture(autouse=True)
def rm_cleanup_failed_files() -> tp.Generator[None, None, None]:
    """Remove status files of failed cleanups, so they don't affect other tests."""
    yield
    for f in status_files.list_cleanup_failed_files():
        f.unlink()


@pytest.fixture
def store() -> ReconcilingStore:
    return ReconcilingStore(delay=2)


@pytest.fixture
def store_cls() -> type[ReconcilingStore]:
    """Return the store class, for tests that need a fresh store for every example."""
    return ReconcilingStore
