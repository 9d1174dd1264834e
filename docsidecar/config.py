"""Configuration loader for the converter and CLI."""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml

from docsidecar.serialization.markers import is_block_id


@dataclass
class ConverterConfig:
    block_id_prefix: str = "blk"
    words_per_minute: int = 200
    list_indent: int = 2
    preserve_tables: bool = True


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class Config:
    converter: ConverterConfig = field(default_factory=ConverterConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge_defaults(data: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    merged = defaults.copy()
    merged.update({k: v for k, v in data.items() if v is not None and k in defaults})
    return merged


def load_config(path: Optional[str] = None) -> Config:
    """Load YAML config into typed Config; no path means defaults."""
    raw: Dict[str, Any] = {}
    if path:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    converter_defaults = {
        "block_id_prefix": "blk",
        "words_per_minute": 200,
        "list_indent": 2,
        "preserve_tables": True,
    }
    logging_defaults = {"level": "INFO"}

    converter_cfg = ConverterConfig(**_merge_defaults(raw.get("converter") or {}, converter_defaults))
    logging_cfg = LoggingConfig(**_merge_defaults(raw.get("logging") or {}, logging_defaults))

    if converter_cfg.words_per_minute <= 0:
        raise ValueError("converter.words_per_minute must be positive")
    if converter_cfg.list_indent < 1:
        raise ValueError("converter.list_indent must be at least 1")
    if not is_block_id(converter_cfg.block_id_prefix):
        raise ValueError("converter.block_id_prefix may only contain letters, digits, _, : and -")

    return Config(converter=converter_cfg, logging=logging_cfg)
