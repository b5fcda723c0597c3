"""YAML configuration loading for rcptd.

Provides safe YAML file loading using ``yaml.safe_load`` so that neither
the daemon configuration nor the delivery map files can instantiate Python
objects. Used by
[BaseService.from_yaml()][rcptd.core.base_service.BaseService.from_yaml]
and by the [ConfigStore][rcptd.resolver.config_store.ConfigStore] when it
reads a delivery map file.

Examples:
    ```python
    from rcptd.core.yaml import load_yaml

    config = load_yaml("config/services/resolverd.yaml")
    ```
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str | Path) -> dict[str, Any]:
    """Load and parse a YAML mapping from a file.

    Args:
        config_path: Path to the YAML file (absolute or relative).

    Returns:
        Parsed configuration as a nested dictionary. Returns an empty dict
        if the file exists but contains no data.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is unreadable, contains invalid YAML
            syntax, or its top level is not a mapping.

    Warning:
        The structure of the returned dictionary is not validated here.
        Callers pass it to a Pydantic model for schema validation.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"{config_path} must contain a mapping, got {type(data).__name__}"
        )
    return data
