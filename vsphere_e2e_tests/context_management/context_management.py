"""Module for exposing useful components of test context management.

Every test of the e2e suite runs in its own context, isolated from other tests that may be running
in parallel on other `pytest-xdist` workers.

Key concepts:
    - **Address claims**: Each test needs IP addresses for its workload cluster (at least the
      control plane endpoint). Addresses are claimed from a backend selected once per process:
      the in-cluster IPAM provider when testing against a real vCenter, or the vCenter simulator
      controller. Claims are exclusive to the test that made them and are released when the test
      is finished, no matter the outcome.
    - **Readiness**: Objects created by the framework (address claims, `EnvVar`,
      `VMOperatorDependencies`) are reconciled by controllers the framework doesn't own. The
      framework polls them until they are ready, with a fixed timeout.
    - **Test specific clusterctl config**: The claimed addresses and the variables resolved by
      the simulator are written to a copy of the base clusterctl config, one per test. The base
      config is never modified.
    - **`E2EContextManager`**: The class the `e2e_context` fixture interacts with. Its `context()`
      method sets up the environment, yields `ContextSettings` to the test and always tears the
      environment down.
"""

# flake8: noqa
from vsphere_e2e_tests.context_management.address_managers import AddressClaim
from vsphere_e2e_tests.context_management.address_managers import AddressManager
from vsphere_e2e_tests.context_management.address_managers import (
    CONTROL_PLANE_ENDPOINT_IP_VARIABLE,
)
from vsphere_e2e_tests.context_management.address_managers import get_address_manager
from vsphere_e2e_tests.context_management.manager import ContextSettings
from vsphere_e2e_tests.context_management.manager import ContextState
from vsphere_e2e_tests.context_management.manager import E2EContextManager
from vsphere_e2e_tests.context_management.manager import SetupOptions
from vsphere_e2e_tests.context_management.manager import flavor_for_mode
