"""Failures that abort setup or teardown of a test context."""


class E2EContextError(Exception):
    """Base class for errors of the test context framework."""


class AllocationFailure(E2EContextError):
    """The address backend failed to claim the requested addresses."""


class DependencyNotFound(E2EContextError):
    """A singleton that must exist before the test run started is missing."""


class ReadinessTimeout(E2EContextError):
    """A resource didn't reach the expected state in time."""


class ConfigReadError(E2EContextError):
    """A config file is missing or malformed."""


class ConfigWriteError(E2EContextError):
    """A config file couldn't be written."""


class CleanupFailure(E2EContextError):
    """Resources claimed by a test were not released."""
