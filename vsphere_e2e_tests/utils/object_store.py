"""Access to objects of the management cluster.

The framework doesn't own the controllers that reconcile the objects it creates. It only needs to
create an object, read it back (to observe its status) and delete it. `ObjectStore` is the narrow
interface for that, with two implementations:

* `InMemoryObjectStore` keeps objects in a dictionary. Used by framework tests, where a fake
  reconciler fills in the object status.
* `KubectlObjectStore` talks to a real cluster using the `kubectl` binary.
"""

import copy
import dataclasses
import json
import logging
import pathlib as pl
import tempfile
import typing as tp

from vsphere_e2e_tests.utils import exceptions
from vsphere_e2e_tests.utils import helpers

LOGGER = logging.getLogger(__name__)


class NotFoundError(exceptions.E2EContextError):
    """Object doesn't exist."""


class ObjectStoreError(exceptions.E2EContextError):
    """Object store operation failed for other reason than the object not existing."""


def get_api_group(api_version: str) -> str:
    """Return API group of the `apiVersion` value, empty for the core group."""
    return api_version.rpartition("/")[0]


@dataclasses.dataclass(frozen=True, order=True)
class ObjectRef:
    kind: str
    namespace: str
    name: str
    # Not part of the identity, kinds of the objects handled by the framework are unique
    api_group: str = dataclasses.field(default="", compare=False)

    def __str__(self) -> str:
        return f"{self.kind} {self.namespace}/{self.name}"

    @property
    def resource(self) -> str:
        """Return the resource type fully qualified with the API group.

        A bare kind can be resolved to a built-in resource with the same name, e.g. `IPAddress`
        is served both by `networking.k8s.io` and by `ipam.cluster.x-k8s.io`.
        """
        if not self.api_group:
            return self.kind
        return f"{self.kind}.{self.api_group}"


@dataclasses.dataclass
class KubeObject:
    api_version: str
    kind: str
    namespace: str
    name: str
    spec: dict[str, tp.Any] = dataclasses.field(default_factory=dict)
    status: dict[str, tp.Any] = dataclasses.field(default_factory=dict)

    @property
    def ref(self) -> ObjectRef:
        return ObjectRef(
            kind=self.kind,
            namespace=self.namespace,
            name=self.name,
            api_group=get_api_group(self.api_version),
        )

    def to_manifest(self) -> dict[str, tp.Any]:
        manifest: dict[str, tp.Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": {"name": self.name, "namespace": self.namespace},
            "spec": copy.deepcopy(self.spec),
        }
        if self.status:
            manifest["status"] = copy.deepcopy(self.status)
        return manifest

    @classmethod
    def from_manifest(cls, manifest: dict[str, tp.Any]) -> "KubeObject":
        metadata = manifest.get("metadata") or {}
        return cls(
            api_version=manifest.get("apiVersion") or "",
            kind=manifest.get("kind") or "",
            namespace=metadata.get("namespace") or "",
            name=metadata.get("name") or "",
            spec=manifest.get("spec") or {},
            status=manifest.get("status") or {},
        )


class ObjectStore:
    """Generic object store."""

    def create(self, obj: KubeObject) -> None:
        """Create the object."""
        raise NotImplementedError

    def get(self, ref: ObjectRef) -> KubeObject:
        """Return current state of the object, raise `NotFoundError` if it doesn't exist."""
        raise NotImplementedError

    def delete(self, ref: ObjectRef) -> None:
        """Delete the object, raise `NotFoundError` if it doesn't exist."""
        raise NotImplementedError


class InMemoryObjectStore(ObjectStore):
    """Object store that keeps objects in memory.

    Objects are copied on the way in and out, so callers can't change stored state by mutating
    objects they hold.
    """

    def __init__(self) -> None:
        self.objects: dict[ObjectRef, KubeObject] = {}

    def create(self, obj: KubeObject) -> None:
        if obj.ref in self.objects:
            msg = f"{obj.ref} already exists"
            raise ObjectStoreError(msg)
        self.objects[obj.ref] = copy.deepcopy(obj)

    def get(self, ref: ObjectRef) -> KubeObject:
        obj = self.objects.get(ref)
        if obj is None:
            msg = f"{ref} not found"
            raise NotFoundError(msg)
        return copy.deepcopy(obj)

    def delete(self, ref: ObjectRef) -> None:
        if ref not in self.objects:
            msg = f"{ref} not found"
            raise NotFoundError(msg)
        del self.objects[ref]

    def set_status(self, ref: ObjectRef, status: dict[str, tp.Any]) -> None:
        """Replace status of the object, the way a controller would."""
        if ref not in self.objects:
            msg = f"{ref} not found"
            raise NotFoundError(msg)
        self.objects[ref].status = copy.deepcopy(status)

    def list_kind(self, kind: str) -> list[KubeObject]:
        return [copy.deepcopy(o) for r, o in sorted(self.objects.items()) if r.kind == kind]


class KubectlObjectStore(ObjectStore):
    """Object store backed by the `kubectl` binary."""

    def __init__(self, kubeconfig: str = "") -> None:
        self.kubeconfig = kubeconfig

    def _kubectl(self, args: list[str]) -> bytes:
        kubeconfig_args = ["--kubeconfig", self.kubeconfig] if self.kubeconfig else []
        return helpers.run_command(["kubectl", *kubeconfig_args, *args])

    @staticmethod
    def _is_not_found(err: Exception) -> bool:
        return "(NotFound)" in str(err) or "not found" in str(err)

    def create(self, obj: KubeObject) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            manifest_file = pl.Path(tmp_dir) / f"{obj.name}.json"
            with open(manifest_file, "w", encoding="utf-8") as out_fp:
                json.dump(obj.to_manifest(), out_fp)

            try:
                self._kubectl(["create", "-f", str(manifest_file)])
            except RuntimeError as err:
                msg = f"Failed to create {obj.ref}"
                raise ObjectStoreError(msg) from err

    def get(self, ref: ObjectRef) -> KubeObject:
        try:
            out = self._kubectl(
                ["get", ref.resource, ref.name, "-n", ref.namespace, "-o", "json"]
            )
        except RuntimeError as err:
            if self._is_not_found(err):
                msg = f"{ref} not found"
                raise NotFoundError(msg) from err
            msg = f"Failed to get {ref}"
            raise ObjectStoreError(msg) from err

        return KubeObject.from_manifest(json.loads(out.decode("utf-8")))

    def delete(self, ref: ObjectRef) -> None:
        try:
            self._kubectl(["delete", ref.resource, ref.name, "-n", ref.namespace, "--wait=false"])
        except RuntimeError as err:
            if self._is_not_found(err):
                msg = f"{ref} not found"
                raise NotFoundError(msg) from err
            msg = f"Failed to delete {ref}"
            raise ObjectStoreError(msg) from err
