"""Test environment configuration."""

import os
import pathlib as pl

IS_XDIST = bool(os.environ.get("PYTEST_XDIST_TESTRUNUID"))


class TestTargets:
    """Where the workload clusters are created."""

    VCENTER = "vcenter"
    VCSIM = "vcsim"


class TestModes:
    """Which flavor of the provider is tested."""

    GOVMOMI = "govmomi"
    SUPERVISOR = "supervisor"


class CleanupPolicies:
    """What happens to the rest of the test run when releasing addresses failed."""

    # The failure is reported for the test that owned the claims, other tests continue
    REPORT = "report"
    # The failure is reported and every test that starts afterwards fails fast
    BLOCK = "block"


TEST_TARGET = os.environ.get("E2E_TEST_TARGET") or TestTargets.VCENTER
if TEST_TARGET not in (TestTargets.VCENTER, TestTargets.VCSIM):
    msg = f"Invalid E2E_TEST_TARGET: {TEST_TARGET}"
    raise RuntimeError(msg)

TEST_MODE = os.environ.get("E2E_TEST_MODE") or TestModes.GOVMOMI
if TEST_MODE not in (TestModes.GOVMOMI, TestModes.SUPERVISOR):
    msg = f"Invalid E2E_TEST_MODE: {TEST_MODE}"
    raise RuntimeError(msg)

# Resolve base clusterctl config, the test specific configs are derived from it
CLUSTERCTL_CONFIG: str | pl.Path = os.environ.get("CLUSTERCTL_CONFIG") or ""
if CLUSTERCTL_CONFIG:
    CLUSTERCTL_CONFIG = pl.Path(CLUSTERCTL_CONFIG).expanduser().resolve()

# Resolve e2e config, source of variables like `CLUSTER_CLASS_NAME`
E2E_CONFIG: str | pl.Path = os.environ.get("E2E_CONFIG") or ""
if E2E_CONFIG:
    E2E_CONFIG = pl.Path(E2E_CONFIG).expanduser().resolve()

KUBECONFIG = os.environ.get("KUBECONFIG") or ""

# Polling used for all the resources reconciled by controllers outside of the framework
READINESS_TIMEOUT = float(os.environ.get("READINESS_TIMEOUT") or 30)
READINESS_INTERVAL = float(os.environ.get("READINESS_INTERVAL") or 5)
if READINESS_TIMEOUT <= 0 or READINESS_INTERVAL <= 0:
    msg = (
        f"Invalid READINESS_TIMEOUT '{READINESS_TIMEOUT}' or "
        f"READINESS_INTERVAL '{READINESS_INTERVAL}': must be > 0"
    )
    raise RuntimeError(msg)

# In cluster IPAM provider
IPAM_NAMESPACE = os.environ.get("IPAM_NAMESPACE") or "default"
IPAM_POOL_NAME = os.environ.get("IPAM_POOL_NAME") or "capv-e2e-ippool"
IPAM_POOL_KIND = os.environ.get("IPAM_POOL_KIND") or "InClusterIPPool"
IPAM_POOL_API_GROUP = os.environ.get("IPAM_POOL_API_GROUP") or "ipam.cluster.x-k8s.io"

# The vCenter simulator is a singleton created before the test run starts
VCSIM_NAME = os.environ.get("VCSIM_NAME") or "vcenter"
VCSIM_NAMESPACE = os.environ.get("VCSIM_NAMESPACE") or "default"

CLEANUP_FAILURE_POLICY = os.environ.get("CLEANUP_FAILURE_POLICY") or CleanupPolicies.REPORT
if CLEANUP_FAILURE_POLICY not in (CleanupPolicies.REPORT, CleanupPolicies.BLOCK):
    msg = f"Invalid CLEANUP_FAILURE_POLICY: {CLEANUP_FAILURE_POLICY}"
    raise RuntimeError(msg)
