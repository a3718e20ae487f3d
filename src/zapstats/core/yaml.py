"""YAML configuration loading.

Used by [BaseService.from_yaml()][zapstats.core.base_service.BaseService.from_yaml]
and by the CLI to read service configuration files. Only ``yaml.safe_load``
is used, so YAML tags cannot instantiate Python objects.

Examples:
    ```python
    from zapstats.core.yaml import load_yaml

    config = load_yaml("config/stats.yaml")
    ```
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str | Path) -> dict[str, Any]:
    """Load a YAML file whose top level is a mapping.

    Args:
        config_path: Path to the YAML file.

    Returns:
        The parsed mapping; ``{}`` for an empty file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not valid YAML or its top level
            is not a mapping.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with path.open(encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"invalid YAML in {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"{config_path} must contain a mapping, got {type(data).__name__}"
        )
    return data
