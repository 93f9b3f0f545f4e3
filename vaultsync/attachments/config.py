"""Configuration for attachment sync.

Settings are stored as JSON in ``{vault}/.vaultsync/config.json``. String
values may reference environment variables:

- ``${VAR}`` - replaced with the variable's value, empty string if not set
- ``${VAR:-default}`` - replaced with the value, or ``default`` if not set

so secrets such as the access key can live in the environment or a ``.env``
file instead of the vault.
"""

import json
import logging
import os
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

__all__ = [
    "SyncSettings",
    "CONFIG_DIR_NAME",
    "default_config_path",
    "expand_env_vars",
]

CONFIG_DIR_NAME = ".vaultsync"
CONFIG_FILE_NAME = "config.json"

# Pattern to match ${VAR} or ${VAR:-default} syntax
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

REQUIRED_FIELDS = ("access_key_id", "access_key_secret", "bucket", "endpoint", "prefix")


def expand_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` references in a string."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)
        env_value = os.environ.get(var_name)
        if env_value is not None:
            return env_value
        return default if default is not None else ""

    return ENV_VAR_PATTERN.sub(replacer, value)


def default_config_path(vault_root: Path) -> Path:
    return Path(vault_root) / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def parse_bool(value: Any) -> bool:
    """Parse a boolean written as 1/0, true/false, yes/no or on/off.

    Raises:
        ValueError: If ``value`` is none of those
    """
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Not a boolean: {value}")


def parse_interval(value: Any) -> int:
    """Parse a minute count; anything non-numeric or negative becomes 0 (off)."""
    try:
        if isinstance(value, (int, float)):
            minutes = int(value)
        else:
            minutes = int(str(value).strip())
    except ValueError:
        return 0
    return max(0, minutes)


@dataclass
class SyncSettings:
    """Object storage and sync settings.

    Defaults match a fresh install: no credentials, the Guangzhou endpoint,
    attachments under ``assets/`` and auto sync off.
    """

    access_key_id: str = ""
    access_key_secret: str = ""
    bucket: str = ""
    endpoint: str = "oss-cn-guangzhou.aliyuncs.com"
    prefix: str = "notes_assets"
    attachment_folder: str = "assets"
    file_types: str = "png,jpg,jpeg,gif,webp,svg,pdf,docx,xlsx,pptx"
    keep_local_file: bool = False
    auto_sync_enabled: bool = False
    auto_sync_interval: int = 1  # minutes, 0 = disabled

    def __post_init__(self):
        self.attachment_folder = self.attachment_folder.strip("/")
        # Values read from JSON or the environment may arrive as strings
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, str) and ENV_VAR_PATTERN.search(value):
                # Unexpanded reference, kept as written so it can be saved back
                continue
            if f.type is bool and not isinstance(value, bool):
                try:
                    value = parse_bool(value)
                except ValueError:
                    logger.warning(
                        f"Invalid value for {f.name}: {value!r}, using {f.default}"
                    )
                    value = f.default
            elif f.type is int:
                value = parse_interval(value)
            setattr(self, f.name, value)

    @classmethod
    def from_dict(cls, data: dict[str, Any], expand: bool = True) -> "SyncSettings":
        """Create settings from a dictionary, ignoring unknown keys.

        Args:
            data: Raw settings
            expand: Expand ${VAR} references in string values
        """
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            if key not in known:
                logger.debug(f"Ignoring unknown setting: {key}")
                continue
            if expand and isinstance(value, str):
                value = expand_env_vars(value)
            values[key] = value
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def load(cls, path: Path, expand: bool = True) -> "SyncSettings":
        """Load settings from ``path``, falling back to defaults if absent.

        Pass ``expand=False`` when the settings will be saved back, so that
        environment references are not written out as plain values.
        """
        path = Path(path)
        if not path.exists():
            logger.debug(f"No settings file at {path}, using defaults")
            return cls()

        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data, expand=expand)

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.debug(f"Saved settings to {path}")

    def set_value(self, key: str, raw: str) -> None:
        """Set a field from its string form, coercing to the field's type.

        Raises:
            KeyError: If ``key`` is not a setting
            ValueError: If ``raw`` cannot be coerced
        """
        field_types = {f.name: f.type for f in fields(self)}
        if key not in field_types:
            raise KeyError(f"Unknown setting: {key}")

        field_type = field_types[key]
        if field_type is bool:
            value = parse_bool(raw)
        elif field_type is int:
            value = parse_interval(raw)
        else:
            value = raw

        setattr(self, key, value)
        self.__post_init__()

    def missing_fields(self) -> list[str]:
        return [name for name in REQUIRED_FIELDS if not getattr(self, name)]

    @property
    def is_complete(self) -> bool:
        """True when credentials, bucket, endpoint and prefix are all set."""
        return not self.missing_fields()

    @property
    def allowed_extensions(self) -> set[str]:
        return {
            ext.strip().lower().lstrip(".")
            for ext in self.file_types.split(",")
            if ext.strip()
        }

    @property
    def archive_folder(self) -> str:
        return f"{self.attachment_folder}/archive"
