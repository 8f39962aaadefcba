"""Objects reconciled by the vCenter simulator controller.

When tests run against the vCenter simulator, the test variables (vCenter URL, credentials,
datacenter, ...) are not known upfront. The framework asks the simulator controller for them by
creating an `EnvVar` object and waiting until the controller fills in its status.

In supervisor mode, the workload cluster namespace also needs `VMOperatorDependencies`, which can
be created only once the namespace exists.
"""

import logging
import typing as tp

from vsphere_e2e_tests.context_management import address_managers
from vsphere_e2e_tests.context_management import common
from vsphere_e2e_tests.utils import configuration
from vsphere_e2e_tests.utils import exceptions
from vsphere_e2e_tests.utils import helpers
from vsphere_e2e_tests.utils import object_store
from vsphere_e2e_tests.utils import wait_utils

LOGGER = logging.getLogger(__name__)

VCSIM_API_VERSION = address_managers.VCSIM_API_VERSION
VCENTER_SIMULATOR_KIND = "VCenterSimulator"
ENV_VAR_KIND = "EnvVar"
VM_OPERATOR_DEPENDENCIES_KIND = "VMOperatorDependencies"
VM_OPERATOR_DEPENDENCIES_NAME = "vcsim"

# Variables that are set later on by the test itself
IGNORED_VARIABLES = frozenset(
    {
        "NAMESPACE",
        "CLUSTER_NAME",
        "KUBERNETES_VERSION",
        "CONTROL_PLANE_MACHINE_COUNT",
        "WORKER_MACHINE_COUNT",
        "VSPHERE_SSH_AUTHORIZED_KEY",
    }
)

# Variables with this prefix may be set in the environment with values of a real vCenter
VSPHERE_VARIABLE_PREFIX = "VSPHERE_"


def get_vcenter_simulator(
    store: object_store.ObjectStore,
    name: str = configuration.VCSIM_NAME,
    namespace: str = configuration.VCSIM_NAMESPACE,
) -> object_store.KubeObject:
    """Return the `VCenterSimulator` singleton.

    The simulator is created before the test run starts, it is an error if it doesn't exist.
    """
    ref = object_store.ObjectRef(
        kind=VCENTER_SIMULATOR_KIND,
        namespace=namespace,
        name=name,
        api_group=object_store.get_api_group(VCSIM_API_VERSION),
    )
    try:
        return store.get(ref)
    except object_store.NotFoundError as err:
        msg = f"Failed to get {ref}, it must be created before running tests"
        raise exceptions.DependencyNotFound(msg) from err


def _namespaced_ref(obj: object_store.KubeObject | address_managers.AddressClaim) -> dict:
    return {"namespace": obj.namespace, "name": obj.name}


def get_env_var_ref(test_name: str) -> object_store.ObjectRef:
    """Return reference of a new `EnvVar` for the test.

    The name has a random suffix, names of different tests can be the same once sanitized.
    """
    return object_store.ObjectRef(
        kind=ENV_VAR_KIND,
        namespace=common.DEFAULT_NAMESPACE,
        name=f"{common.sanitize_name(test_name)}-{helpers.get_rand_str(5)}",
        api_group=object_store.get_api_group(VCSIM_API_VERSION),
    )


def create_env_var(
    store: object_store.ObjectStore,
    env_var_ref: object_store.ObjectRef,
    vcenter_simulator: object_store.KubeObject,
    control_plane_endpoint: address_managers.AddressClaim,
    *,
    timeout: float = configuration.READINESS_TIMEOUT,
    interval: float = configuration.READINESS_INTERVAL,
) -> object_store.KubeObject:
    """Create `EnvVar` for the test and wait until the simulator controller resolves it."""
    env_var = object_store.KubeObject(
        api_version=VCSIM_API_VERSION,
        kind=env_var_ref.kind,
        namespace=env_var_ref.namespace,
        name=env_var_ref.name,
        spec={
            "vCenterSimulator": _namespaced_ref(vcenter_simulator),
            "controlPlaneEndpoint": _namespaced_ref(control_plane_endpoint),
            # `vmOperatorDependencies` is omitted, the namespace where they will be created
            # doesn't exist yet. The controller falls back to a default dependencies config.
        },
    )
    LOGGER.info(f"Creating EnvVar {env_var.namespace}/{env_var.name}")

    return wait_utils.provision_and_await(
        store=store,
        obj=env_var,
        check_func=lambda o: bool(o.status.get("variables")),
        desc=f"EnvVar {env_var.namespace}/{env_var.name}",
        timeout=timeout,
        interval=interval,
    )


def delete_env_var(store: object_store.ObjectStore, env_var_ref: object_store.ObjectRef) -> None:
    """Delete the `EnvVar` of the test, it is fine if it was not created at all."""
    try:
        store.delete(env_var_ref)
    except object_store.NotFoundError:
        LOGGER.debug(f"{env_var_ref} doesn't exist.")
    else:
        LOGGER.info(f"Deleted {env_var_ref}.")


def filter_env_variables(variables: dict[str, str]) -> dict[str, str]:
    """Drop variables that are set by the test itself."""
    return {k: str(v) for k, v in variables.items() if k not in IGNORED_VARIABLES}


def get_env_variables(
    store: object_store.ObjectStore,
    env_var_ref: object_store.ObjectRef,
    claims: tp.Sequence[address_managers.AddressClaim],
    *,
    timeout: float = configuration.READINESS_TIMEOUT,
    interval: float = configuration.READINESS_INTERVAL,
) -> dict[str, str]:
    """Get test variables derived from the vCenter simulator.

    The first of `claims` must be the control plane endpoint claim.
    """
    if not claims:
        msg = "The control plane endpoint claim is required"
        raise ValueError(msg)

    vcenter_simulator = get_vcenter_simulator(store=store)
    env_var = create_env_var(
        store=store,
        env_var_ref=env_var_ref,
        vcenter_simulator=vcenter_simulator,
        control_plane_endpoint=claims[0],
        timeout=timeout,
        interval=interval,
    )

    LOGGER.info(f"Setting test variables from {env_var_ref}")
    variables = filter_env_variables(env_var.status["variables"])
    for name in variables:
        # In CI the env contains values of a real vCenter, make sure the simulator values are used
        if name.startswith(VSPHERE_VARIABLE_PREFIX):
            helpers.unset_env(name)

    return variables


def setup_namespace_with_dependencies(
    store: object_store.ObjectStore,
    namespace: str,
    *,
    timeout: float = configuration.READINESS_TIMEOUT,
    interval: float = configuration.READINESS_INTERVAL,
) -> None:
    """Create `VMOperatorDependencies` in the workload cluster namespace and wait until ready."""
    vcenter_simulator = get_vcenter_simulator(store=store)

    LOGGER.info(f"Creating VMOperatorDependencies {namespace}/{VM_OPERATOR_DEPENDENCIES_NAME}")
    dependencies = object_store.KubeObject(
        api_version=VCSIM_API_VERSION,
        kind=VM_OPERATOR_DEPENDENCIES_KIND,
        namespace=namespace,
        name=VM_OPERATOR_DEPENDENCIES_NAME,
        spec={"vCenterSimulatorRef": _namespaced_ref(vcenter_simulator)},
    )
    wait_utils.provision_and_await(
        store=store,
        obj=dependencies,
        check_func=lambda o: o.status.get("ready") is True,
        desc=f"VMOperatorDependencies on namespace {namespace}",
        timeout=timeout,
        interval=interval,
    )
