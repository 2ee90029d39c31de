"""
Kernel configuration.

Runtime settings for the production kernel (database, logging, actor and
numbering defaults).  Values come from code defaults, a YAML file, a plain
dict, or ``MES_*`` environment variables; batch numbering configurations
themselves are rows in ``batch_number_configs`` and may be seeded from YAML
through ``BatchNumberService.load_configs``.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Self

import yaml

from mes_kernel.logging_config import get_logger

logger = get_logger("config")

_ENV_PREFIX = "MES_"


def load_yaml_file(path: Path | str) -> Any:
    """
    Load a single YAML file.

    Returns an empty dict for an empty file.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


@dataclass
class KernelConfig:
    """
    Configuration schema for the production kernel.

    Override at instantiation, from a dict, or from YAML:

        config = KernelConfig.from_yaml("mes.yaml")
    """

    # Persistence
    database_url: str = "sqlite:///mes_kernel.db"
    echo_sql: bool = False
    pool_size: int = 20

    # Logging
    log_level: str = "INFO"

    # Attribution
    default_actor: str = "SYSTEM"

    # Units of measure
    default_unit: str = "KG"

    # Batch numbering fallbacks
    supplier_lot_max_length: int = 15
    fallback_sequence_width: int = 3

    def __post_init__(self):
        if self.supplier_lot_max_length < 1:
            raise ValueError(
                f"supplier_lot_max_length must be positive: {self.supplier_lot_max_length}"
            )
        if not self.default_actor.strip():
            raise ValueError("default_actor must not be blank")
        logger.debug(
            "kernel_config_initialized",
            extra={
                "dialect": self.database_url.split(":", 1)[0],
                "log_level": self.log_level,
                "default_actor": self.default_actor,
                "default_unit": self.default_unit,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dict; unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown kernel config keys: {', '.join(unknown)}")
        logger.info("kernel_config_loading_from_dict", extra={"keys": sorted(data)})
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Path | str) -> Self:
        """Load from a YAML file, reading the ``kernel:`` section when present."""
        data = load_yaml_file(path)
        if not isinstance(data, dict):
            raise ValueError(f"Kernel config file {path} must hold a mapping")
        return cls.from_dict(data.get("kernel", data))

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Self:
        """Read ``MES_<FIELD>`` variables (e.g. ``MES_DATABASE_URL``) over the defaults."""
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(f"{_ENV_PREFIX}{f.name.upper()}")
            if raw is None:
                continue
            if f.type in (bool, "bool"):
                values[f.name] = raw.strip().lower() in ("1", "true", "yes", "on")
            elif f.type in (int, "int"):
                values[f.name] = int(raw)
            else:
                values[f.name] = raw
        return cls(**values)
