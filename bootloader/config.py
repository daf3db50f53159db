"""
Bootloader configuration.

Settings are read from (later overrides earlier):
1. Dataclass defaults
2. A ``.env`` file (python-dotenv)
3. Process environment variables

Property data for ``Bootloader.set_properties`` can be loaded from YAML or
JSON files with ``load_properties_file``.
"""

from typing import Any, Dict, Mapping, Optional
from dataclasses import dataclass
from pathlib import Path
import json
import os

from dotenv import dotenv_values

from .errors import ConfigError


ENV_LOG = "APP_BLOADER_LOG"
ENV_PHASE_TIMEOUT = "APP_BLOADER_PHASE_TIMEOUT"
ENV_MAX_DEPTH = "APP_BLOADER_MAX_DEPTH"

DEFAULT_PROPERTY_PREFIX = "prop-"
DEFAULT_MAX_PROVIDER_DEPTH = 5


@dataclass
class BootloaderConfig:
    """
    Bootloader settings.

    Attributes:
        show_log: Emit diagnostics to the logging sink
        phase_timeout: Deadline in seconds for each lifecycle phase
            (None waits forever)
        max_provider_depth: Bound on nested provider unwrapping
        property_prefix: Internal key prefix of the property store
    """

    show_log: bool = True
    phase_timeout: Optional[float] = None
    max_provider_depth: int = DEFAULT_MAX_PROVIDER_DEPTH
    property_prefix: str = DEFAULT_PROPERTY_PREFIX

    def __post_init__(self):
        if self.max_provider_depth < 1:
            raise ConfigError(
                f"max_provider_depth must be at least 1, got {self.max_provider_depth}"
            )
        if self.phase_timeout is not None and self.phase_timeout <= 0:
            raise ConfigError(
                f"phase_timeout must be positive, got {self.phase_timeout}"
            )

    @classmethod
    def from_env(
        cls,
        env_file: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "BootloaderConfig":
        """
        Build a config from a ``.env`` file and the environment.

        Args:
            env_file: Optional path to a ``.env`` file
            environ: Environment mapping (defaults to ``os.environ``)
        """
        values: Dict[str, Optional[str]] = {}
        if env_file and Path(env_file).exists():
            values.update(dotenv_values(env_file))
        values.update(os.environ if environ is None else environ)

        kwargs: Dict[str, Any] = {"show_log": _parse_log_flag(values.get(ENV_LOG))}

        timeout = values.get(ENV_PHASE_TIMEOUT)
        if timeout:
            kwargs["phase_timeout"] = _parse_number(ENV_PHASE_TIMEOUT, timeout, float)

        depth = values.get(ENV_MAX_DEPTH)
        if depth:
            kwargs["max_provider_depth"] = _parse_number(ENV_MAX_DEPTH, depth, int)

        return cls(**kwargs)


def _parse_log_flag(value: Optional[str]) -> bool:
    # Logging is on unless explicitly set to something other than "true"
    if value is None or value == "":
        return True
    return value.strip().lower() == "true"


def _parse_number(key: str, value: str, kind):
    try:
        return kind(value.strip())
    except ValueError:
        raise ConfigError(f"{key} expected {kind.__name__}, got {value!r}") from None


def load_properties_file(path: str) -> Dict[str, Any]:
    """
    Load property data from a YAML or JSON file.

    Args:
        path: ``.yaml``/``.yml`` or ``.json`` file

    Returns:
        Parsed mapping (empty for an empty file)

    Raises:
        ConfigError: If the file is missing, has an unknown suffix or does not
            contain a mapping
    """
    file = Path(path)
    if not file.exists():
        raise ConfigError(f"Properties file not found: {path}")

    with open(file) as f:
        if file.suffix in (".yaml", ".yml"):
            import yaml
            data = yaml.safe_load(f)
        elif file.suffix == ".json":
            data = json.load(f)
        else:
            raise ConfigError(f"Unsupported properties file type: {file.suffix or path}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Properties file {path} must contain a mapping, got {type(data).__name__}")
    return data
