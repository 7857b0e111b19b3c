from __future__ import annotations

"""
Analysis configuration: which interface to check and which rules run.

Settings arrive either from CLI flags or from a TOML file whose keys are the
two analyzer options, interface_package and interface_name, at the top level
or under an [ifacecheck] table. Both paths are validated by the Settings
model, so unknown or missing keys fail the same way.
"""

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ifacecheck.rules.base import Rule
from ifacecheck.rules.interface_leak import InterfaceLeakRule

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Settings could not be read or did not validate."""


class Settings(BaseModel):
    """The analyzer options as received from the host."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    interface_package: str = Field(..., min_length=1, description="Package identifier, import path or path suffix")
    interface_name: str = Field(..., min_length=1, description="Name of the interface type")


@dataclass
class Config:
    """
    Analysis configuration.

    interface_package may be a package name, the last element of an import
    path, or a full import path.
    """

    interface_package: str
    interface_name: str
    rules: Sequence[Rule] = field(default_factory=list)


def get_default_config(interface_package: str, interface_name: str) -> Config:
    """Return a configuration for the given interface with all implemented rules."""
    rules: List[Rule] = [
        InterfaceLeakRule(),
    ]
    return Config(interface_package=interface_package, interface_name=interface_name, rules=rules)


def decode_settings(raw: Mapping[str, Any]) -> Config:
    """Validate raw analyzer settings and build a Config from them."""
    try:
        settings = Settings.model_validate(dict(raw))
    except ValidationError as e:
        raise ConfigError(f"invalid settings: {e}") from e
    return get_default_config(settings.interface_package, settings.interface_name)


def load_config_file(path: Path) -> Config:
    """Read settings from a TOML file."""
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: {e}") from e
    section = data.get("ifacecheck", data)
    if not isinstance(section, dict):
        raise ConfigError(f"{path}: [ifacecheck] must be a table")
    logger.info("Loaded settings from %s", path)
    return decode_settings(section)


def get_enabled_rules(config: Config) -> Sequence[Rule]:
    """Return the list of enabled rules from the given config."""
    return config.rules
