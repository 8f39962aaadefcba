import contextlib
import logging
import typing as tp

from vsphere_e2e_tests.utils import configuration

# Use dummy locking if not executing with multiple workers.
# When running with multiple workers, status files shared by all workers (like the record of
# a failed cleanup) need to be accessed by a single worker at a time.
if configuration.IS_XDIST:
    from filelock import FileLock

    # Suppress messages from filelock
    logging.getLogger("filelock").setLevel(logging.WARNING)

    FileLockIfXdist: tp.Any = FileLock
else:
    FileLockIfXdist = contextlib.nullcontext
