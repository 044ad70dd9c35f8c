from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("crudkit.config.yaml")

ALLOWED_EXECUTION_MODES = ("batch", "in_memory")


class DatabaseSettings(BaseModel):
    url: str = Field(default="sqlite:///crudkit.db", description="SQLAlchemy database URL")
    echo: bool = Field(default=False, description="Log every SQL statement")


class OrderingSettings(BaseModel):
    """How the index maintainer executes structural operations."""

    safe_move: bool = Field(
        default=True,
        description="Use the three-phase interior move (required when uniqueness is checked per statement)",
    )
    execution: Literal["batch", "in_memory"] = Field(
        default="batch",
        description="batch: set-based UPDATE statements; in_memory: load rows and persist them one by one",
    )
    lock_subsets: bool = Field(
        default=True,
        description="Lock the affected subset rows (SELECT ... FOR UPDATE) before shifting",
    )


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Root level for the crudkit loggers")


class CrudSettings(BaseModel):
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    ordering: OrderingSettings = Field(default_factory=OrderingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_config(path: Path | None = None) -> Dict[str, Any]:
    """
    Load the raw configuration mapping from YAML.

    Args:
        path: Optional path to the config file. Defaults to crudkit.config.yaml

    Returns:
        Dictionary with configuration (empty for an empty file)

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the document is not a mapping
    """
    cfg_path = path or DEFAULT_CONFIG_PATH
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as f:
        config = yaml.safe_load(f)

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError("Config must be a dictionary")
    return config


def load_settings(path: Optional[Path] = None) -> CrudSettings:
    """
    Load and validate settings.

    An explicit ``path`` must exist. Without one, the default file is used
    when present and built-in defaults apply otherwise.

    Raises:
        FileNotFoundError: If an explicit config path doesn't exist
        ValueError: If the config fails validation
    """
    if path is None and not DEFAULT_CONFIG_PATH.exists():
        return CrudSettings()

    config = load_config(path)

    ordering = config.get("ordering") or {}
    if not isinstance(ordering, dict):
        raise ValueError("Config 'ordering' must be a dictionary if provided")
    execution = ordering.get("execution")
    if execution is not None and execution not in ALLOWED_EXECUTION_MODES:
        raise ValueError(
            f"Invalid ordering.execution '{execution}', expected one of: {', '.join(ALLOWED_EXECUTION_MODES)}"
        )

    return CrudSettings.model_validate(config)
