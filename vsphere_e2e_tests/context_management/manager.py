"""Setup and teardown of the environment specific to a single test.

This module provides the `E2EContextManager` class, the interface for tests to get an isolated
environment. For every test it:

* claims IP addresses (always one for the control plane endpoint) from the address manager
  selected by configuration,
* when running against the vCenter simulator, asks the simulator controller for the test
  variables,
* writes a clusterctl config specific to the test, with the claimed addresses and the resolved
  variables,
* releases the claimed addresses when the test is finished, no matter what the outcome of
  the test was.

The `E2EContextManager` is instantiated by the `e2e_context` fixture for each test.
"""

import contextlib
import dataclasses
import enum
import functools
import logging
import os
import pathlib as pl
import typing as tp

from vsphere_e2e_tests.context_management import address_managers
from vsphere_e2e_tests.context_management import simulator
from vsphere_e2e_tests.context_management import status_files
from vsphere_e2e_tests.utils import clusterctl_config
from vsphere_e2e_tests.utils import configuration
from vsphere_e2e_tests.utils import exceptions
from vsphere_e2e_tests.utils import framework_log
from vsphere_e2e_tests.utils import locking
from vsphere_e2e_tests.utils import object_store
from vsphere_e2e_tests.utils import types as ttypes

LOGGER = logging.getLogger(__name__)

CLUSTER_CLASS_NAME_VARIABLE = "CLUSTER_CLASS_NAME"
SUPERVISOR_SUFFIX = "supervisor"


class ContextState(enum.StrEnum):
    IDLE = "idle"
    CLAIMING_ADDRESSES = "claiming_addresses"
    PROVISIONING_ENVIRONMENT = "provisioning_environment"
    WRITING_OVERLAY = "writing_overlay"
    READY = "ready"
    RUNNING_BODY = "running_body"
    CLEANING_UP = "cleaning_up"
    DONE = "done"


@dataclasses.dataclass(frozen=True)
class SetupOptions:
    # Additional IPs to claim, stored into the given variables
    ip_variable_names: tuple[str, ...] = ()
    # Store gateway of the control plane endpoint IP into this variable
    gateway_variable_name: str = ""


def flavor_for_mode(flavor: str, test_mode: str = configuration.TEST_MODE) -> str:
    """Return name of the cluster template flavor to use in the given test mode.

    All the supervisor flavors have the name of the corresponding govmomi flavor with
    the "-supervisor" suffix.
    """
    if test_mode != configuration.TestModes.SUPERVISOR:
        return flavor
    if not flavor:
        return SUPERVISOR_SUFFIX
    return f"{flavor}-{SUPERVISOR_SUFFIX}"


@dataclasses.dataclass(frozen=True)
class ContextSettings:
    """Settings passed to the test."""

    clusterctl_config_path: pl.Path
    # Called by the test once the workload cluster namespace exists, with the namespace name
    post_namespace_created_func: tp.Callable[[str], None] | None
    flavor_for_mode: tp.Callable[[str], str]


class E2EContextManager:
    """Set of methods for setup and teardown of the environment of a single test."""

    def __init__(
        self,
        test_name: str,
        store: object_store.ObjectStore,
        *,
        options: SetupOptions = SetupOptions(),
        address_manager: address_managers.AddressManager | None = None,
        clusterctl_config_path: ttypes.FileType = configuration.CLUSTERCTL_CONFIG,
        e2e_variables: dict[str, str] | None = None,
        test_mode: str = configuration.TEST_MODE,
        cleanup_policy: str = configuration.CLEANUP_FAILURE_POLICY,
        worker_id: str = "",
        timeout: float = configuration.READINESS_TIMEOUT,
        interval: float = configuration.READINESS_INTERVAL,
    ) -> None:
        if not clusterctl_config_path:
            msg = "Path to the base clusterctl config is not set."
            raise ValueError(msg)

        self.test_name = test_name
        self.store = store
        self.options = options
        self.address_manager = address_manager or address_managers.get_address_manager(
            store=store
        )
        self.clusterctl_config_path = pl.Path(clusterctl_config_path)
        self.e2e_variables = e2e_variables
        self.test_mode = test_mode
        self.cleanup_policy = cleanup_policy
        self.worker_id = worker_id or os.environ.get("PYTEST_XDIST_WORKER") or "master"
        self.timeout = timeout
        self.interval = interval

        self.state = ContextState.IDLE
        self.claims: list[address_managers.AddressClaim] = []
        self.env_var_ref: object_store.ObjectRef | None = None
        self.variables: dict[str, str] = {}
        self._settings: ContextSettings | None = None

    @property
    def settings(self) -> ContextSettings:
        if self._settings is None:
            msg = f"Context for '{self.test_name}' is not set up."
            raise RuntimeError(msg)
        return self._settings

    def _set_state(self, state: ContextState) -> None:
        LOGGER.debug(f"{self.test_name}: {self.state} -> {state}")
        self.state = state

    def _get_e2e_variables(self) -> dict[str, str]:
        if self.e2e_variables is None:
            self.e2e_variables = (
                clusterctl_config.load_e2e_variables(configuration.E2E_CONFIG)
                if configuration.E2E_CONFIG
                else {}
            )
        return self.e2e_variables

    def _check_not_blocked(self) -> None:
        """Fail fast if a previous test leaked its claims and the policy is to block."""
        if self.cleanup_policy != configuration.CleanupPolicies.BLOCK:
            return

        with locking.FileLockIfXdist(status_files.get_lock_file()):
            failed_files = status_files.list_cleanup_failed_files()

        if failed_files:
            failed_tests = status_files.get_test_names(paths=failed_files)
            msg = (
                f"Not setting up '{self.test_name}', cleanup failed for previous test(s): "
                f"{', '.join(failed_tests)}"
            )
            raise exceptions.CleanupFailure(msg)

    def _record_cleanup_failure(self, err: exceptions.CleanupFailure) -> None:
        framework_log.framework_logger().error(f"Cleanup of '{self.test_name}' failed: {err}")

        if self.cleanup_policy != configuration.CleanupPolicies.BLOCK:
            return

        with locking.FileLockIfXdist(status_files.get_lock_file()):
            status_files.create_cleanup_failed_file(
                test_name=self.test_name, worker_id=self.worker_id, message=str(err)
            )

    def _setup_environment(self) -> ContextSettings:
        post_namespace_created_func = None

        if self.address_manager.type == configuration.TestTargets.VCSIM:
            self._set_state(ContextState.PROVISIONING_ENVIRONMENT)
            # Recorded before creating, so the `EnvVar` is deleted even if it never gets ready
            self.env_var_ref = simulator.get_env_var_ref(test_name=self.test_name)
            self.variables.update(
                simulator.get_env_variables(
                    store=self.store,
                    env_var_ref=self.env_var_ref,
                    claims=self.claims,
                    timeout=self.timeout,
                    interval=self.interval,
                )
            )

        if self.test_mode == configuration.TestModes.SUPERVISOR:
            post_namespace_created_func = functools.partial(
                simulator.setup_namespace_with_dependencies,
                self.store,
                timeout=self.timeout,
                interval=self.interval,
            )

            # Update the `CLUSTER_CLASS_NAME` variable adding the supervisor suffix
            e2e_variables = self._get_e2e_variables()
            if CLUSTER_CLASS_NAME_VARIABLE in e2e_variables:
                self.variables[CLUSTER_CLASS_NAME_VARIABLE] = (
                    f"{e2e_variables[CLUSTER_CLASS_NAME_VARIABLE]}-{SUPERVISOR_SUFFIX}"
                )

        # Create a new clusterctl config file based on the base file and add the new variables
        self._set_state(ContextState.WRITING_OVERLAY)
        test_config_path = clusterctl_config.get_test_config_path(
            base_path=self.clusterctl_config_path, test_name=self.test_name
        )
        LOGGER.info(f"Writing a new clusterctl config to {test_config_path}")
        clusterctl_config.amend(
            base_path=self.clusterctl_config_path,
            output_path=test_config_path,
            variables=self.variables,
        )

        return ContextSettings(
            clusterctl_config_path=test_config_path,
            post_namespace_created_func=post_namespace_created_func,
            flavor_for_mode=functools.partial(flavor_for_mode, test_mode=self.test_mode),
        )

    def setup(self) -> ContextSettings:
        """Set up the environment for the test.

        If anything fails after the addresses were claimed, the addresses are released before
        the error is re-raised.
        """
        if self.state != ContextState.IDLE:
            msg = f"Context for '{self.test_name}' was already set up."
            raise RuntimeError(msg)

        LOGGER.info(f"Setting up test env for {self.test_name}")
        self._check_not_blocked()

        self._set_state(ContextState.CLAIMING_ADDRESSES)
        self.claims, variables = self.address_manager.claim_ips(
            test_name=self.test_name,
            ip_variable_names=self.options.ip_variable_names,
            gateway_variable_name=self.options.gateway_variable_name,
        )
        self.variables.update(variables)

        try:
            self._settings = self._setup_environment()
        except Exception as err:
            try:
                self.teardown()
            except exceptions.CleanupFailure as cleanup_err:
                msg = f"Setup and cleanup of '{self.test_name}' failed"
                raise ExceptionGroup(msg, [err, cleanup_err]) from None
            raise

        self._set_state(ContextState.READY)
        return self._settings

    def _release_env_var(self, env_var_ref: object_store.ObjectRef) -> list[str]:
        try:
            simulator.delete_env_var(store=self.store, env_var_ref=env_var_ref)
        except Exception as err:
            return [f"{env_var_ref}: {err}"]
        return []

    def teardown(self) -> None:
        """Release resources created in `setup`.

        The `EnvVar` (simulator path only) is deleted first, it references the control plane
        endpoint claim. All resources are attempted before raising.

        Raises:
            CleanupFailure: If any of the resources couldn't be released.
        """
        if self.state == ContextState.DONE:
            return

        LOGGER.info(f"Cleaning up test env for {self.test_name}")
        self._set_state(ContextState.CLEANING_UP)
        claims, self.claims = self.claims, []
        env_var_ref, self.env_var_ref = self.env_var_ref, None
        try:
            failed = self._release_env_var(env_var_ref) if env_var_ref else []
            try:
                if claims:
                    self.address_manager.cleanup(claims)
            except exceptions.CleanupFailure as err:
                failed.append(str(err))

            if failed:
                msg = f"Failed to clean up '{self.test_name}': {'; '.join(failed)}"
                cleanup_err = exceptions.CleanupFailure(msg)
                self._record_cleanup_failure(cleanup_err)
                raise cleanup_err
        finally:
            self._set_state(ContextState.DONE)

    @contextlib.contextmanager
    def context(self) -> tp.Iterator[ContextSettings]:
        """Set up the environment, run the test and always clean up - context manager.

        When both the test and the cleanup fail, both failures are raised in an exception group.
        """
        settings = self.setup()
        self._set_state(ContextState.RUNNING_BODY)

        body_err: BaseException | None = None
        try:
            yield settings
        except BaseException as err:
            body_err = err
            raise
        finally:
            try:
                self.teardown()
            except exceptions.CleanupFailure as cleanup_err:
                if body_err is None:
                    raise
                msg = f"Test '{self.test_name}' and its cleanup failed"
                raise BaseExceptionGroup(msg, [body_err, cleanup_err]) from None
