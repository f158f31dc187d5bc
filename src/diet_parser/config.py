"""Configuration management for diet_parser.

This module provides a centralized configuration system that supports:
- Default values for all settings
- Loading from TOML configuration files
- Environment variable overrides
- Validation of configuration values

Configuration priority (highest to lowest):
1. Values passed directly (CLI arguments)
2. Environment variables (DIET_PARSER_*)
3. Project config file (.diet-parser.toml)
4. User config file (~/.config/diet-parser/config.toml)
5. Default values

Example:
    >>> config = ExtractionConfig.load()
    >>> config.update(delay_between_chunks=3.0)
    >>> config.save("~/.config/diet-parser/config.toml")
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .exceptions import InvalidConfiguration
from .schema import MealType

ENV_PREFIX = "DIET_PARSER_"


@dataclass
class ExtractionConfig:
    """Configuration for recipe extraction and storage.

    Attributes:
        Storage Settings:
            database_url: SQLAlchemy URL of the recipe database
            pdf_source_dir: Directory scanned for diet-plan PDFs

        Provider Call Settings:
            delay_between_chunks: Pause between successive provider calls (seconds)
            retry_attempts: Attempts per chunk on transport errors (including the first)
            retry_delay: Fixed pause between retry attempts (seconds)
            render_dpi: Resolution used when pages are sent as images

        Extraction Settings:
            check_duplicates: Skip recipes whose name is already stored
            recent_recipes_context: Number of recent recipe names listed in the prompt
            default_meal_type: Meal type used for unrecognized labels

        Output Settings:
            debug_mode: Save prompts and raw responses per chunk
            debug_dir: Directory for debug output

    Example:
        >>> config = ExtractionConfig(retry_attempts=5)
        >>> config.default_meal_type
        'Lunch'
    """

    # Storage settings
    database_url: str = "sqlite:///recipes.db"
    pdf_source_dir: Path = field(default_factory=lambda: Path("pdfs"))

    # Provider call settings
    delay_between_chunks: float = 1.0
    retry_attempts: int = 3
    retry_delay: float = 1.0
    render_dpi: int = 150

    # Extraction settings
    check_duplicates: bool = True
    recent_recipes_context: int = 10
    default_meal_type: str = MealType.Lunch.value

    # Output settings
    debug_mode: bool = False
    debug_dir: Path = field(default_factory=lambda: Path("debug"))

    def __post_init__(self) -> None:
        """Validate configuration values after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate configuration values.

        Raises:
            InvalidConfiguration: If any configuration value is invalid
        """
        if not self.database_url:
            raise InvalidConfiguration("database_url must not be empty")

        if self.delay_between_chunks < 0:
            raise InvalidConfiguration(
                "delay_between_chunks must be non-negative",
                delay_between_chunks=self.delay_between_chunks,
            )

        if self.retry_attempts < 1:
            raise InvalidConfiguration(
                "retry_attempts must be at least 1",
                retry_attempts=self.retry_attempts,
            )

        if self.retry_delay < 0:
            raise InvalidConfiguration(
                "retry_delay must be non-negative",
                retry_delay=self.retry_delay,
            )

        if not 36 <= self.render_dpi <= 1200:
            raise InvalidConfiguration(
                "render_dpi must be between 36 and 1200",
                render_dpi=self.render_dpi,
            )

        if self.recent_recipes_context < 0:
            raise InvalidConfiguration(
                "recent_recipes_context must be non-negative",
                recent_recipes_context=self.recent_recipes_context,
            )

        valid_meal_types = [m.value for m in MealType]
        if self.default_meal_type not in valid_meal_types:
            raise InvalidConfiguration(
                f"Invalid default_meal_type: {self.default_meal_type}",
                default_meal_type=self.default_meal_type,
                valid_meal_types=", ".join(valid_meal_types),
            )

        # Paths may arrive as str from TOML or the environment
        if not isinstance(self.pdf_source_dir, Path):  # type: ignore[reportUnnecessaryIsInstance]
            self.pdf_source_dir = Path(self.pdf_source_dir)
        if not isinstance(self.debug_dir, Path):  # type: ignore[reportUnnecessaryIsInstance]
            self.debug_dir = Path(self.debug_dir)

    @property
    def fallback_meal_type(self) -> MealType:
        """The default meal type as an enum member."""
        return MealType(self.default_meal_type)

    @classmethod
    def load(
        cls,
        config_path: str | Path | None = None,
        load_user_config: bool = True,
        load_env: bool = True,
    ) -> "ExtractionConfig":
        """Load configuration from file(s) and environment variables.

        Configuration is loaded in this order (later overrides earlier):
        1. Default values
        2. User config file (~/.config/diet-parser/config.toml)
        3. Project config file (.diet-parser.toml or specified path)
        4. Environment variables (DIET_PARSER_*)

        Args:
            config_path: Path to project config file (optional)
            load_user_config: Whether to load user config file
            load_env: Whether to load environment variables

        Returns:
            Loaded and validated configuration

        Raises:
            InvalidConfiguration: If configuration is invalid
        """
        config_dict: dict[str, Any] = {}

        if load_user_config:
            user_config_path = Path.home() / ".config" / "diet-parser" / "config.toml"
            if user_config_path.exists():
                config_dict.update(cls._load_toml(user_config_path))

        if config_path:
            project_path = Path(config_path)
            if project_path.exists():
                config_dict.update(cls._load_toml(project_path))
        else:
            default_path = Path(".diet-parser.toml")
            if default_path.exists():
                config_dict.update(cls._load_toml(default_path))

        if load_env:
            config_dict.update(cls._load_env())

        unknown = set(config_dict) - set(cls.__dataclass_fields__)
        if unknown:
            raise InvalidConfiguration(
                "Unknown configuration keys",
                keys=", ".join(sorted(unknown)),
            )

        return cls(**config_dict)

    @staticmethod
    def _load_toml(path: Path) -> dict[str, Any]:
        """Load configuration from TOML file.

        A ``[diet-parser]`` table is used when present, otherwise the top level.

        Raises:
            InvalidConfiguration: If TOML file is invalid
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if "diet-parser" in data:
                return data["diet-parser"]
            return data

        except (OSError, tomllib.TOMLDecodeError) as e:
            raise InvalidConfiguration(
                f"Failed to load configuration from {path}",
                path=str(path),
                error=str(e),
            ) from e

    @staticmethod
    def _load_env() -> dict[str, Any]:
        """Load configuration from environment variables.

        Environment variables are prefixed with DIET_PARSER_ and use uppercase
        snake_case, for example:
        - DIET_PARSER_DATABASE_URL=sqlite:///diet.db
        - DIET_PARSER_RETRY_ATTEMPTS=5
        - DIET_PARSER_CHECK_DUPLICATES=false

        Returns:
            Dictionary of configuration values from environment
        """
        config: dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            config_key = key[len(ENV_PREFIX) :].lower()

            if value.lower() in ("true", "yes"):
                config[config_key] = True
            elif value.lower() in ("false", "no"):
                config[config_key] = False
            elif value.isdigit():
                config[config_key] = int(value)
            elif value.replace(".", "", 1).isdigit():
                config[config_key] = float(value)
            else:
                config[config_key] = value

        return config

    def save(self, path: str | Path) -> None:
        """Save configuration to TOML file.

        Raises:
            InvalidConfiguration: If save fails
        """
        import tomli_w

        path = Path(path).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                tomli_w.dump(self.to_dict(), f)
        except (OSError, TypeError, ValueError) as e:
            raise InvalidConfiguration(
                f"Failed to save configuration to {path}",
                path=str(path),
                error=str(e),
            ) from e

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary (paths as strings)."""
        result: dict[str, Any] = {}
        for key, value in self.__dict__.items():
            if isinstance(value, Path):
                result[key] = str(value)
            else:
                result[key] = value
        return result

    def update(self, **kwargs: Any) -> None:
        """Update configuration values.

        Raises:
            InvalidConfiguration: If a key is unknown or a value is invalid
        """
        for key, value in kwargs.items():
            if key in self.__dataclass_fields__:
                setattr(self, key, value)
            else:
                raise InvalidConfiguration(
                    f"Unknown configuration key: {key}",
                    key=key,
                    valid_keys=", ".join(self.__dataclass_fields__.keys()),
                )

        self._validate()
