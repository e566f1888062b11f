"""Configuration loading and validation for the YAML config file."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from bluetui.core.errors import ConfigLoadError, ConfigValidationError

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class Config:
    adapter: str | None = None
    receive_dir: Path | None = None
    gsm_apn: str = ""
    gsm_number: str = ""
    obex: bool = True
    network: bool = True

    @property
    def adapter_path(self) -> str | None:
        """The configured adapter as an object path (``hci0`` -> ``/org/bluez/hci0``)."""
        if not self.adapter:
            return None
        if self.adapter.startswith("/"):
            return self.adapter
        return f"/org/bluez/{self.adapter}"


def config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "bluetui" / "config.yaml"


def _load_schema_validator() -> Any:
    schema_text = resources.files("bluetui.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "on"):
            return True
        if lowered in ("false", "no", "off"):
            return False
    raise ConfigValidationError(f"{context} must be boolean true/false")


def _normalize_dir(value: str, *, context: str) -> Path:
    path = Path(value).expanduser()
    if path.exists() and not path.is_dir():
        raise ConfigValidationError(f"{context} '{path}' is not a directory")
    return path


def _build_config(doc: dict[str, Any], source: Path) -> Config:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    return Config(
        adapter=doc.get("adapter"),
        receive_dir=_normalize_dir(doc["receive_dir"], context="receive_dir")
        if "receive_dir" in doc
        else None,
        gsm_apn=doc.get("gsm_apn", ""),
        gsm_number=doc.get("gsm_number", ""),
        obex=_normalize_bool(doc.get("obex", True), context="obex"),
        network=_normalize_bool(doc.get("network", True), context="network"),
    )


def load_config(path: Path | None = None, **overrides: Any) -> Config:
    """Load the config file (if present) and apply non-None overrides."""
    path = path or config_path()
    if path.exists():
        config = _build_config(_read_yaml(path), path)
        LOGGER.debug("Loaded config from %s", path)
    else:
        config = Config()

    values = {key: value for key, value in overrides.items() if value is not None}
    if "receive_dir" in values:
        values["receive_dir"] = _normalize_dir(str(values["receive_dir"]), context="receive_dir")
    return replace(config, **values)
