"""Status files shared by all pytest workers.

All status files are created in the single temp directory shared by all workers
(the directory returned by `temptools.get_pytest_shared_tmp()`). This allows all
workers to see status files created by other workers.

Status file names have the form `<glob>_@@<test_name>@@_<worker_id>`.
"""

import pathlib as pl
import re

from vsphere_e2e_tests.context_management import common
from vsphere_e2e_tests.utils import temptools

RE_TESTNAME = re.compile("_@@(.+)@@_")


def get_lock_file() -> str:
    return f"{temptools.get_pytest_shared_tmp()}/{common.CLEANUP_FAILED_LOCK}"


def get_cleanup_failed_file(test_name: str, worker_id: str) -> pl.Path:
    """Return the status file that indicates that a test leaked its claims."""
    shared_tmp = temptools.get_pytest_shared_tmp()
    return shared_tmp / f"{common.CLEANUP_FAILED_GLOB}_@@{test_name}@@_{worker_id}"


def create_cleanup_failed_file(test_name: str, worker_id: str, message: str) -> pl.Path:
    """Create the status file that indicates that a test leaked its claims."""
    status_file = get_cleanup_failed_file(test_name=test_name, worker_id=worker_id)
    status_file.write_text(message, encoding="utf-8")
    return status_file


def list_cleanup_failed_files() -> list[pl.Path]:
    """List all "cleanup failed" status files created by any worker."""
    shared_tmp = temptools.get_pytest_shared_tmp()
    return sorted(shared_tmp.glob(f"{common.CLEANUP_FAILED_GLOB}_@@*"))


def get_test_names(paths: list[pl.Path]) -> list[str]:
    """Get names of tests from status files."""
    names = []
    for p in paths:
        found = RE_TESTNAME.search(p.name)
        if found:
            names.append(found.group(1))
    return names
