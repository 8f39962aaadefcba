"""Test specific copies of the clusterctl config file."""

import dataclasses
import logging
import os
import pathlib as pl
import typing as tp

import yaml

from vsphere_e2e_tests.utils import exceptions
from vsphere_e2e_tests.utils import types as ttypes

LOGGER = logging.getLogger(__name__)


@dataclasses.dataclass
class ClusterctlConfig:
    path: pl.Path
    values: dict[str, tp.Any] = dataclasses.field(default_factory=dict)


def _load_yaml_mapping(path: ttypes.FileType) -> dict[str, tp.Any]:
    path = pl.Path(path)
    try:
        with open(path, encoding="utf-8") as fp_in:
            content = yaml.safe_load(fp_in)
    except OSError as err:
        msg = f"Failed to read the config file '{path}'"
        raise exceptions.ConfigReadError(msg) from err
    except yaml.YAMLError as err:
        msg = f"Failed to unmarshal the config file '{path}'"
        raise exceptions.ConfigReadError(msg) from err

    if content is None:
        return {}
    if not isinstance(content, dict):
        msg = f"The config file '{path}' doesn't contain a mapping"
        raise exceptions.ConfigReadError(msg)
    return content


def read(path: ttypes.FileType) -> ClusterctlConfig:
    """Read a clusterctl config file from disk."""
    return ClusterctlConfig(path=pl.Path(path), values=_load_yaml_mapping(path))


def write(config: ClusterctlConfig) -> pl.Path:
    """Write a clusterctl config file to disk.

    The file can contain credentials, so it is readable only by the owner.
    """
    try:
        data = yaml.safe_dump(config.values, default_flow_style=False)
        config.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(config.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with open(fd, "w", encoding="utf-8") as fp_out:
            fp_out.write(data)
        # `os.open` mode is not applied to already existing file
        config.path.chmod(0o600)
    except yaml.YAMLError as err:
        msg = f"Failed to marshal the clusterctl config file '{config.path}'"
        raise exceptions.ConfigWriteError(msg) from err
    except OSError as err:
        msg = f"Failed to write the clusterctl config file '{config.path}'"
        raise exceptions.ConfigWriteError(msg) from err

    return config.path


def amend(
    base_path: ttypes.FileType, output_path: ttypes.FileType, variables: dict[str, str]
) -> pl.Path:
    """Copy the clusterctl config from `base_path` to `output_path` and add the given variables.

    Values of `variables` override values already present in the base config.
    """
    base_path = pl.Path(base_path)
    output_path = pl.Path(output_path)
    if base_path.resolve() == output_path.resolve():
        msg = f"Refusing to overwrite the base clusterctl config '{base_path}'"
        raise exceptions.ConfigWriteError(msg)

    config = read(base_path)
    config.values.update(variables)
    config.path = output_path
    return write(config)


def get_test_config_path(base_path: ttypes.FileType, test_name: str) -> pl.Path:
    """Return path of the clusterctl config specific to the given test.

    The config is always created next to the base config, path separators in `test_name` are
    replaced.
    """
    base_path = pl.Path(base_path)
    stem = base_path.name.removesuffix(".yaml")
    file_test_name = test_name.replace(os.sep, "_").replace("/", "_")
    return base_path.with_name(f"{stem}-{file_test_name}.yaml")


def load_e2e_variables(path: ttypes.FileType) -> dict[str, str]:
    """Return the `variables` section of the e2e config file."""
    variables = _load_yaml_mapping(path).get("variables") or {}
    if not isinstance(variables, dict):
        msg = f"The `variables` section of '{path}' is not a mapping"
        raise exceptions.ConfigReadError(msg)
    return {str(k): str(v) for k, v in variables.items()}
