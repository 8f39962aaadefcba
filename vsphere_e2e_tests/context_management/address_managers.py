"""Claiming of IP addresses for workload clusters.

Every test needs at least one IP address, the control plane endpoint of the workload cluster.
Tests can ask for more addresses, e.g. for a load balancer. Addresses come from one of two
backends:

* `InClusterAddressManager` claims addresses from the in-cluster IPAM provider. Used when tests
  run against a real vCenter.
* `SimulatorAddressManager` claims control plane endpoints from the vCenter simulator controller.

The backend is selected once per process by `configuration.TEST_TARGET`, see
`get_address_manager`.

The first claim returned by `claim_ips` is always the claim for the control plane endpoint.
"""

import dataclasses
import functools
import logging
import typing as tp

from vsphere_e2e_tests.context_management import common
from vsphere_e2e_tests.utils import configuration
from vsphere_e2e_tests.utils import exceptions
from vsphere_e2e_tests.utils import helpers
from vsphere_e2e_tests.utils import object_store
from vsphere_e2e_tests.utils import wait_utils

LOGGER = logging.getLogger(__name__)

CONTROL_PLANE_ENDPOINT_IP_VARIABLE = "CONTROL_PLANE_ENDPOINT_IP"

IPAM_API_VERSION = "ipam.cluster.x-k8s.io/v1beta1"
VCSIM_API_VERSION = "vcsim.infrastructure.cluster.x-k8s.io/v1alpha1"
IP_ADDRESS_KIND = "IPAddress"


@dataclasses.dataclass(frozen=True, order=True)
class AddressClaim:
    kind: str
    namespace: str
    name: str
    variable_name: str
    api_group: str = ""

    @property
    def ref(self) -> object_store.ObjectRef:
        return object_store.ObjectRef(
            kind=self.kind, namespace=self.namespace, name=self.name, api_group=self.api_group
        )


class AddressManager:
    """Generic address backend."""

    claim_kind: tp.ClassVar[str] = ""
    claim_api_version: tp.ClassVar[str] = ""

    def __init__(
        self,
        store: object_store.ObjectStore,
        namespace: str = common.DEFAULT_NAMESPACE,
        timeout: float = configuration.READINESS_TIMEOUT,
        interval: float = configuration.READINESS_INTERVAL,
    ) -> None:
        self.type = "unknown"
        self.store = store
        self.namespace = namespace
        self.timeout = timeout
        self.interval = interval

    def _new_claim_obj(self, claim: AddressClaim) -> object_store.KubeObject:
        """Return the object that requests a new address."""
        msg = f"Not implemented for address manager type '{self.type}'."
        raise NotImplementedError(msg)

    def _resolve_claim(self, claim: AddressClaim) -> dict[str, str]:
        """Wait for the claim to be fulfilled and return `{"address": ..., "gateway": ...}`."""
        msg = f"Not implemented for address manager type '{self.type}'."
        raise NotImplementedError(msg)

    def _wait_for(
        self,
        ref: object_store.ObjectRef,
        check_func: tp.Callable[[object_store.KubeObject], bool],
    ) -> object_store.KubeObject:
        return wait_utils.wait_for(
            fetch_func=lambda: self.store.get(ref),
            check_func=check_func,
            desc=str(ref),
            timeout=self.timeout,
            interval=self.interval,
        )

    def _release(self, claims: tp.Iterable[AddressClaim]) -> list[str]:
        """Delete the claims, return description of the claims that failed to be deleted."""
        failed = []
        for claim in claims:
            try:
                self.store.delete(claim.ref)
            except object_store.NotFoundError:
                # Already gone, nothing is leaking
                LOGGER.warning(f"Claim {claim.ref} doesn't exist anymore.")
            except Exception as err:
                failed.append(f"{claim.ref}: {err}")
            else:
                LOGGER.info(f"Released {claim.ref} ({claim.variable_name}).")
        return failed

    def claim_ips(
        self,
        test_name: str,
        *,
        ip_variable_names: tp.Iterable[str] = (),
        gateway_variable_name: str = "",
    ) -> tuple[list[AddressClaim], dict[str, str]]:
        """Claim addresses for the control plane endpoint and for `ip_variable_names`.

        Returns:
            tuple: List of claims, with the control plane endpoint claim first, and mapping of
            variable names to the claimed addresses.

        Raises:
            AllocationFailure: If any of the addresses couldn't be claimed.
        """
        variable_names = [CONTROL_PLANE_ENDPOINT_IP_VARIABLE, *ip_variable_names]
        duplicates = {v for v in variable_names if variable_names.count(v) > 1}
        if duplicates:
            msg = f"Duplicate IP variable names requested: {sorted(duplicates)}"
            raise ValueError(msg)

        LOGGER.info(f"Getting IP for {','.join(variable_names)}")

        claims: list[AddressClaim] = []
        variables: dict[str, str] = {}
        try:
            for variable_name in variable_names:
                claim = AddressClaim(
                    kind=self.claim_kind,
                    namespace=self.namespace,
                    name=f"{common.sanitize_name(test_name)}-{helpers.get_rand_str(5)}",
                    variable_name=variable_name,
                    api_group=object_store.get_api_group(self.claim_api_version),
                )
                self.store.create(self._new_claim_obj(claim))
                claims.append(claim)

                resolved = self._resolve_claim(claim)
                variables[variable_name] = resolved["address"]
                LOGGER.info(f"Claimed {resolved['address']} for {variable_name} ({claim.ref}).")

                if gateway_variable_name and len(claims) == 1:
                    variables[gateway_variable_name] = self._get_gateway(resolved)
        except Exception as err:
            failed = self._release(reversed(claims))
            msg = f"Failed to claim IPs for '{test_name}' from {self.type} address manager"
            exc = exceptions.AllocationFailure(msg)
            if failed:
                exc.add_note(f"Claims leaked while rolling back: {'; '.join(failed)}")
            raise exc from err

        return claims, variables

    def _get_gateway(self, resolved: dict[str, str]) -> str:
        gateway = resolved.get("gateway")
        if not gateway:
            msg = f"No gateway available for address {resolved['address']}"
            raise exceptions.AllocationFailure(msg)
        return gateway

    def cleanup(self, claims: tp.Iterable[AddressClaim]) -> None:
        """Release all the given claims.

        Raises:
            CleanupFailure: If any of the claims couldn't be released. All claims are attempted
                before raising.
        """
        failed = self._release(claims)
        if failed:
            msg = f"Failed to release {len(failed)} IP claim(s): {'; '.join(failed)}"
            raise exceptions.CleanupFailure(msg)


class InClusterAddressManager(AddressManager):
    """Addresses from the in-cluster IPAM provider."""

    claim_kind: tp.ClassVar[str] = "IPAddressClaim"
    claim_api_version: tp.ClassVar[str] = IPAM_API_VERSION

    def __init__(
        self,
        store: object_store.ObjectStore,
        namespace: str = configuration.IPAM_NAMESPACE,
        pool_name: str = configuration.IPAM_POOL_NAME,
        pool_kind: str = configuration.IPAM_POOL_KIND,
        pool_api_group: str = configuration.IPAM_POOL_API_GROUP,
        timeout: float = configuration.READINESS_TIMEOUT,
        interval: float = configuration.READINESS_INTERVAL,
    ) -> None:
        super().__init__(store=store, namespace=namespace, timeout=timeout, interval=interval)
        self.type = configuration.TestTargets.VCENTER
        self.pool_name = pool_name
        self.pool_kind = pool_kind
        self.pool_api_group = pool_api_group

    def _new_claim_obj(self, claim: AddressClaim) -> object_store.KubeObject:
        return object_store.KubeObject(
            api_version=self.claim_api_version,
            kind=claim.kind,
            namespace=claim.namespace,
            name=claim.name,
            spec={
                "poolRef": {
                    "apiGroup": self.pool_api_group,
                    "kind": self.pool_kind,
                    "name": self.pool_name,
                }
            },
        )

    def _resolve_claim(self, claim: AddressClaim) -> dict[str, str]:
        claim_obj = self._wait_for(
            ref=claim.ref,
            check_func=lambda o: bool((o.status.get("addressRef") or {}).get("name")),
        )
        address_ref = object_store.ObjectRef(
            kind=IP_ADDRESS_KIND,
            namespace=claim.namespace,
            name=claim_obj.status["addressRef"]["name"],
            api_group=object_store.get_api_group(IPAM_API_VERSION),
        )
        address_obj = self._wait_for(
            ref=address_ref, check_func=lambda o: bool(o.spec.get("address"))
        )
        return {
            "address": str(address_obj.spec["address"]),
            "gateway": str(address_obj.spec.get("gateway") or ""),
        }


class SimulatorAddressManager(AddressManager):
    """Control plane endpoints from the vCenter simulator controller."""

    claim_kind: tp.ClassVar[str] = "ControlPlaneEndpoint"
    claim_api_version: tp.ClassVar[str] = VCSIM_API_VERSION

    def __init__(
        self,
        store: object_store.ObjectStore,
        namespace: str = configuration.VCSIM_NAMESPACE,
        timeout: float = configuration.READINESS_TIMEOUT,
        interval: float = configuration.READINESS_INTERVAL,
    ) -> None:
        super().__init__(store=store, namespace=namespace, timeout=timeout, interval=interval)
        self.type = configuration.TestTargets.VCSIM

    def _new_claim_obj(self, claim: AddressClaim) -> object_store.KubeObject:
        return object_store.KubeObject(
            api_version=self.claim_api_version,
            kind=claim.kind,
            namespace=claim.namespace,
            name=claim.name,
        )

    def _resolve_claim(self, claim: AddressClaim) -> dict[str, str]:
        endpoint_obj = self._wait_for(ref=claim.ref, check_func=lambda o: bool(o.status.get("host")))
        return {"address": str(endpoint_obj.status["host"])}

    def claim_ips(
        self,
        test_name: str,
        *,
        ip_variable_names: tp.Iterable[str] = (),
        gateway_variable_name: str = "",
    ) -> tuple[list[AddressClaim], dict[str, str]]:
        if gateway_variable_name:
            LOGGER.warning(
                f"Ignoring gateway variable '{gateway_variable_name}', "
                "the vCenter simulator doesn't provide gateways."
            )
        return super().claim_ips(test_name=test_name, ip_variable_names=ip_variable_names)


@functools.cache
def get_address_manager_type() -> type[AddressManager]:
    """Return the address manager class indicated by configuration."""
    if configuration.TEST_TARGET == configuration.TestTargets.VCSIM:
        return SimulatorAddressManager
    return InClusterAddressManager


def get_address_manager(store: object_store.ObjectStore) -> AddressManager:
    """Return instance of the address manager indicated by configuration."""
    return get_address_manager_type()(store=store)
