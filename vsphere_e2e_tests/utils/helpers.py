import logging
import os
import random
import string
import subprocess

import vsphere_e2e_tests.utils.types as ttypes

LOGGER = logging.getLogger(__name__)


def unset_env(name: str) -> bool:
    """Remove variable from the process environment.

    Returns `True` if the variable was set.
    """
    if name not in os.environ:
        return False
    del os.environ[name]
    LOGGER.debug(f"Unset env variable '{name}'.")
    return True


def run_command(
    command: str | list,
    *,
    workdir: ttypes.FileType = "",
    ignore_fail: bool = False,
    shell: bool = False,
) -> bytes:
    """Run command."""
    cmd: str | list
    if isinstance(command, str):
        cmd = command if shell else command.split()
        cmd_str = command
    else:
        cmd = command
        cmd_str = " ".join(command)

    LOGGER.debug("Running `%s`", cmd_str)

    with subprocess.Popen(
        cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, shell=shell, cwd=workdir or None
    ) as p:
        stdout, stderr = p.communicate()
        retcode = p.returncode

    if not ignore_fail and retcode != 0:
        err_dec = stderr.decode()
        err_dec = err_dec or stdout.decode()
        msg = f"An error occurred while running `{cmd_str}`: {err_dec}"
        raise RuntimeError(msg)

    return stdout


def get_rand_str(length: int = 8) -> str:
    """Return random string."""
    if length < 1:
        return ""
    return "".join(random.choice(string.ascii_lowercase) for i in range(length))

