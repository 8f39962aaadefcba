import contextlib
import logging
import typing as tp

import pytest
from _pytest.fixtures import FixtureRequest
from _pytest.tmpdir import TempPathFactory
from pytest_metadata.plugin import metadata_key

from vsphere_e2e_tests.context_management import address_managers
from vsphere_e2e_tests.context_management import common
from vsphere_e2e_tests.context_management import context_management
from vsphere_e2e_tests.context_management import status_files
from vsphere_e2e_tests.utils import configuration
from vsphere_e2e_tests.utils import object_store as ostore
from vsphere_e2e_tests.utils import temptools

LOGGER = logging.getLogger(__name__)

SetupFunc = tp.Callable[..., context_management.ContextSettings]


def pytest_configure(config: tp.Any) -> None:
    config.stash[metadata_key]["E2E_TEST_TARGET"] = configuration.TEST_TARGET
    config.stash[metadata_key]["E2E_TEST_MODE"] = configuration.TEST_MODE
    config.stash[metadata_key]["CLUSTERCTL_CONFIG"] = str(configuration.CLUSTERCTL_CONFIG)
    config.stash[metadata_key]["E2E_CONFIG"] = str(configuration.E2E_CONFIG)
    config.stash[metadata_key]["READINESS_TIMEOUT"] = str(configuration.READINESS_TIMEOUT)
    config.stash[metadata_key]["CLEANUP_FAILURE_POLICY"] = configuration.CLEANUP_FAILURE_POLICY


@pytest.fixture(scope="session")
def init_pytest_temp_dirs(tmp_path_factory: TempPathFactory) -> None:
    """Init `PytestTempDirs`."""
    temptools.PytestTempDirs.init(tmp_path_factory=tmp_path_factory)


@pytest.fixture(scope="session")
def report_leaked_claims(init_pytest_temp_dirs: None) -> tp.Generator[None, None, None]:
    """Log tests that failed to release their claims at the end of session."""
    yield
    failed_tests = status_files.get_test_names(paths=status_files.list_cleanup_failed_files())
    if failed_tests:
        LOGGER.error(f"IP claims may be leaking, cleanup failed for: {', '.join(failed_tests)}")


@pytest.fixture(scope="session", autouse=True)
def session_autouse(
    init_pytest_temp_dirs: None,
    report_leaked_claims: None,
) -> None:
    """Autouse session fixtures that are required for session setup and teardown."""


@pytest.fixture(scope="session")
def object_store() -> ostore.ObjectStore:
    """Return object store for the management cluster."""
    return ostore.KubectlObjectStore(kubeconfig=configuration.KUBECONFIG)


@pytest.fixture(scope="session")
def address_manager(object_store: ostore.ObjectStore) -> address_managers.AddressManager:
    """Return the address manager for the configured test target."""
    return context_management.get_address_manager(store=object_store)


@pytest.fixture
def e2e_context(
    worker_id: str,
    request: FixtureRequest,
    object_store: ostore.ObjectStore,
    address_manager: address_managers.AddressManager,
) -> tp.Generator[SetupFunc, None, None]:
    """Return a function that sets up the environment specific to the current test.

    The environment is torn down when the test is finished. Failure to release the claimed
    addresses is reported as an error of the test.
    """
    if not configuration.CLUSTERCTL_CONFIG:
        pytest.skip("The `CLUSTERCTL_CONFIG` env variable is not set.")

    with contextlib.ExitStack() as stack:

        def _setup(
            *, ip_variable_names: tp.Iterable[str] = (), gateway_variable_name: str = ""
        ) -> context_management.ContextSettings:
            context_manager_obj = context_management.E2EContextManager(
                test_name=common.get_test_id(request.node.nodeid),
                store=object_store,
                address_manager=address_manager,
                options=context_management.SetupOptions(
                    ip_variable_names=tuple(ip_variable_names),
                    gateway_variable_name=gateway_variable_name,
                ),
                worker_id=worker_id,
            )
            return stack.enter_context(context_manager_obj.context())

        yield _setup
