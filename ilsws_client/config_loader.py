"""Configuration loading: connection settings, field tables and age ranges."""

import logging
from dataclasses import dataclass
from importlib.resources import files
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

import jsonschema
import yaml

from .errors import ConfigurationError
from .validator import ValidationRule, parse_rule

logger = logging.getLogger(__name__)

MODES = ("new", "overlay")

_FIELD_ENTRY = {
    "type": ["object", "null"],
    "properties": {
        "alias": {"type": "string"},
        "default": {"type": ["string", "number", "boolean"]},
        "required": {"type": ["boolean", "string"]},
        "validation": {"type": "string"},
        "type": {"enum": ["address"]},
    },
    "additionalProperties": False,
}

CONFIG_SCHEMA = {
    "type": "object",
    "required": ["ilsws", "symphony"],
    "properties": {
        "ilsws": {
            "type": "object",
            "required": ["hostname", "webapp"],
            "properties": {
                "hostname": {"type": "string"},
                "port": {"type": "integer"},
                "webapp": {"type": "string"},
                "app_id": {"type": "string"},
                "client_id": {"type": "string"},
                "username": {"type": "string"},
                "password": {"type": "string"},
                "timeout": {"type": "number"},
                "max_search_count": {"type": "integer"},
                "user_privilege_override": {"type": "string"},
            },
        },
        "symphony": {
            "type": "object",
            "required": ["new_fields", "overlay_fields"],
            "properties": {
                "new_fields": {"type": "object", "additionalProperties": _FIELD_ENTRY},
                "overlay_fields": {"type": "object", "additionalProperties": _FIELD_ENTRY},
                "age_ranges": {
                    "type": "object",
                    "propertyNames": {"pattern": r"^\d+-\d+$"},
                    "additionalProperties": {"type": "string"},
                },
                "online_profile": {"type": "string"},
                "online_account_expiration": {"type": ["integer", "null"]},
                "validate_patron_indexes": {"type": "boolean"},
                "search_indexes": {"type": "array", "items": {"type": "string"}},
                "default_patron_include_fields": {"type": "string"},
            },
        },
    },
}


@dataclass(frozen=True)
class FieldConfig:
    """Authoring metadata for one record field."""

    name: str
    alias: Optional[str] = None
    default: Any = None
    required: bool = False
    validation: Optional[ValidationRule] = None
    address: bool = False


@dataclass(frozen=True)
class AgeRange:
    """Inclusive age range mapped to a patron profile."""

    min_age: int
    max_age: int
    profile: str

    def contains(self, age: int) -> bool:
        return self.min_age <= age <= self.max_age


class ConfigLoader:
    """Loads and checks the YAML configuration, then parses it once."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to a YAML config file. Defaults to the
                         local-config.yaml bundled with the package.

        Raises:
            ConfigurationError: If the file does not match CONFIG_SCHEMA or a
                                field table holds a bad validation rule
        """
        if config_path is None:
            config_file = files('ilsws_client').joinpath('local-config.yaml')
            self.config_path = str(config_file)
            with config_file.open('r') as f:
                config = yaml.safe_load(f)
        else:
            self.config_path = config_path
            config = self._load_yaml(config_path)

        self._set_config(config)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "ConfigLoader":
        """Build a loader from an already-parsed config dict."""
        loader = cls.__new__(cls)
        loader.config_path = None
        loader._set_config(config)
        return loader

    def _load_yaml(self, path: str) -> Dict[str, Any]:
        """Load YAML file from disk."""
        with open(path) as f:
            return yaml.safe_load(f)

    def _set_config(self, config: Dict[str, Any]) -> None:
        try:
            jsonschema.validate(instance=config, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            location = " -> ".join(str(p) for p in e.path) if e.path else "root"
            raise ConfigurationError(f"Invalid configuration at {location}: {e.message}") from e

        self.config = config
        symphony = config["symphony"]
        self._field_tables = {
            mode: self._parse_field_table(symphony.get(f"{mode}_fields") or {}, mode)
            for mode in MODES
        }
        self._age_ranges = self._parse_age_ranges(symphony.get("age_ranges") or {})

        logger.debug(
            "Configuration loaded",
            extra={
                'config_path': self.config_path,
                'new_fields': len(self._field_tables["new"]),
                'overlay_fields': len(self._field_tables["overlay"]),
                'age_ranges': len(self._age_ranges),
            }
        )

    def _parse_field_table(self, table: Dict[str, Any], mode: str) -> Mapping[str, FieldConfig]:
        fields = {}
        for name, entry in table.items():
            entry = entry or {}
            rule = entry.get("validation")
            try:
                validation = parse_rule(rule) if rule else None
            except ConfigurationError as e:
                raise ConfigurationError(f"{mode}_fields.{name}: {e}") from e

            fields[name] = FieldConfig(
                name=name,
                alias=entry.get("alias") or None,
                default=entry.get("default"),
                required=_as_bool(entry.get("required", False)),
                validation=validation,
                address=entry.get("type") == "address",
            )
        return MappingProxyType(fields)

    def _parse_age_ranges(self, ranges: Dict[str, str]) -> List[AgeRange]:
        parsed = []
        for span, profile in ranges.items():
            low, high = (int(part) for part in span.split("-"))
            if low > high:
                raise ConfigurationError(f"Age range {span!r} has minimum above maximum")
            parsed.append(AgeRange(low, high, profile))
        return parsed

    def get_ilsws_config(self) -> Dict[str, Any]:
        """Get connection settings (the ilsws block)."""
        return self.config["ilsws"]

    def get_symphony_config(self) -> Dict[str, Any]:
        return self.config["symphony"]

    def get_field_table(self, mode: str) -> Mapping[str, FieldConfig]:
        """
        Get the field configuration for a record mode.

        Args:
            mode: 'new' (registration) or 'overlay' (update)
        """
        if mode not in self._field_tables:
            raise ValueError(f"Unknown record mode: {mode!r} (expected one of {MODES})")
        return self._field_tables[mode]

    def get_field_tables(self) -> Dict[str, Mapping[str, FieldConfig]]:
        return dict(self._field_tables)

    def get_age_ranges(self) -> List[AgeRange]:
        return list(self._age_ranges)

    def get_online_profile(self) -> Optional[str]:
        return self.get_symphony_config().get("online_profile")

    def get_online_expiration(self) -> Optional[int]:
        """Days an online-registered account stays valid, or None."""
        return self.get_symphony_config().get("online_account_expiration")

    def get_search_indexes(self) -> Optional[List[str]]:
        """Configured list of valid patron search indexes, if any."""
        return self.get_symphony_config().get("search_indexes")

    def get_validate_patron_indexes(self) -> bool:
        return bool(self.get_symphony_config().get("validate_patron_indexes", False))

    def get_default_include_fields(self) -> str:
        return self.get_symphony_config().get("default_patron_include_fields", "barcode")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)
