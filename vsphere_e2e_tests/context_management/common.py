import re

# Objects that are not scoped to a workload cluster namespace are created here
DEFAULT_NAMESPACE = "default"

CLEANUP_FAILED_GLOB = ".cleanup_failed"
CLEANUP_FAILED_LOCK = ".cleanup_failed.lock"

_SANITIZE_RE = re.compile("[^a-z0-9-]+")
_TEST_ID_RE = re.compile(r"[^\w.\[\]=-]+")


def get_test_id(nodeid: str) -> str:
    """Turn pytest node id into a test name usable in file names.

    E.g. `tests/test_foo.py::TestFoo::test_bar[x]` -> `tests_test_foo_TestFoo_test_bar[x]`.
    """
    return _TEST_ID_RE.sub("_", nodeid.replace(".py::", "::")).strip("_")


def sanitize_name(s: str, max_len: int = 48) -> str:
    """Turn a test name into a valid Kubernetes object name prefix.

    Long names are shortened from the start, the end of a test id is the most specific part.
    """
    sanitized = _SANITIZE_RE.sub("-", s.lower()).strip("-")[-max_len:].strip("-")
    return sanitized or "test"
