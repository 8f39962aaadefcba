"""Waiting for objects reconciled by controllers outside of the framework."""

import logging
import math
import time
import typing as tp

from vsphere_e2e_tests.utils import configuration
from vsphere_e2e_tests.utils import exceptions
from vsphere_e2e_tests.utils import object_store

LOGGER = logging.getLogger(__name__)

T = tp.TypeVar("T")


def wait_for(
    fetch_func: tp.Callable[[], T],
    check_func: tp.Callable[[T], bool],
    *,
    desc: str,
    timeout: float = configuration.READINESS_TIMEOUT,
    interval: float = configuration.READINESS_INTERVAL,
) -> T:
    """Poll `fetch_func` until `check_func` is true for the fetched value.

    An exception raised by `fetch_func` means "not ready yet", e.g. the object was not created
    yet or the API server is temporarily unavailable. Only the timeout ends the waiting.

    Args:
        fetch_func: A function returning current state of the watched object.
        check_func: A predicate evaluated on the fetched state.
        desc: Description of the watched object, used in log and error messages.
        timeout: Maximum time to wait, in seconds.
        interval: Time between polls, in seconds.

    Returns:
        The first fetched value that satisfied `check_func`.

    Raises:
        ReadinessTimeout: If `check_func` was not satisfied within `timeout`.
    """
    # Don't give up before the full number of polls was made, even if sleep overshoots
    min_attempts = max(1, math.ceil(timeout / interval))
    deadline = time.monotonic() + timeout
    last_err: Exception | None = None
    attempt = 0

    while True:
        attempt += 1
        try:
            obj = fetch_func()
        except Exception as err:
            LOGGER.debug(f"Attempt {attempt}: failed to get {desc}: {err}")
            last_err = err
        else:
            if check_func(obj):
                LOGGER.debug(f"Attempt {attempt}: {desc} is ready.")
                return obj
            LOGGER.debug(f"Attempt {attempt}: {desc} is not ready yet.")

        if attempt >= min_attempts and time.monotonic() >= deadline:
            break
        time.sleep(interval)

    msg = f"Timed out after {timeout}s ({attempt} attempts) waiting for {desc}"
    raise exceptions.ReadinessTimeout(msg) from last_err


def provision_and_await(
    store: object_store.ObjectStore,
    obj: object_store.KubeObject,
    check_func: tp.Callable[[object_store.KubeObject], bool],
    *,
    desc: str = "",
    timeout: float = configuration.READINESS_TIMEOUT,
    interval: float = configuration.READINESS_INTERVAL,
) -> object_store.KubeObject:
    """Create an object and wait until the controller that owns it makes it ready.

    Failure to create the object is not retried.
    """
    store.create(obj)
    return wait_for(
        fetch_func=lambda: store.get(obj.ref),
        check_func=check_func,
        desc=desc or str(obj.ref),
        timeout=timeout,
        interval=interval,
    )
