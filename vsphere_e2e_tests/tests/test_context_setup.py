"""Sanity tests of the environment provided to e2e tests."""

import ipaddress
import logging
import typing as tp

import allure
import pytest

from vsphere_e2e_tests.context_management import context_management
from vsphere_e2e_tests.utils import clusterctl_config
from vsphere_e2e_tests.utils import configuration

LOGGER = logging.getLogger(__name__)

SetupFunc = tp.Callable[..., context_management.ContextSettings]


@pytest.mark.smoke
class TestContextSetup:
    """Check the environment every e2e test gets."""

    @allure.title("Test specific clusterctl config contains claimed IPs")
    def test_claimed_ips(self, e2e_context: SetupFunc):
        """Claim an extra IP and check both addresses are in the test specific config."""
        settings = e2e_context(ip_variable_names=["WORKLOAD_IP"])

        with allure.step("Read test specific clusterctl config"):
            values = clusterctl_config.read(settings.clusterctl_config_path).values

        assert settings.clusterctl_config_path != configuration.CLUSTERCTL_CONFIG
        cp_ip = values[context_management.CONTROL_PLANE_ENDPOINT_IP_VARIABLE]
        workload_ip = values["WORKLOAD_IP"]
        assert ipaddress.ip_address(cp_ip) != ipaddress.ip_address(workload_ip)

    @allure.title("Flavor names follow the test mode")
    def test_flavor_for_mode(self, e2e_context: SetupFunc):
        settings = e2e_context()

        if configuration.TEST_MODE == configuration.TestModes.SUPERVISOR:
            assert settings.flavor_for_mode("") == "supervisor"
            assert settings.flavor_for_mode("topology") == "topology-supervisor"
            assert settings.post_namespace_created_func is not None
        else:
            assert settings.flavor_for_mode("topology") == "topology"
            assert settings.post_namespace_created_func is None
