"""Limit configuration parser for YAML/JSON definitions.

Turns a declarative list of limits into :class:`LimitDefinition` objects
ready for :meth:`Throttler.load_config`.

Example JSON configuration:
```json
[
  {"id": "ID1", "intervalSeconds": 5, "tokensPerInterval": 10},
  {"id": "ID2", "intervalSeconds": 10, "tokensPerInterval": 100}
]
```

Equivalent YAML, optionally nested under a ``limits`` key:
```yaml
limits:
  - id: ID1
    intervalSeconds: 5
    tokensPerInterval: 10
  - id: ID2
    intervalSeconds: 10
    tokensPerInterval: 100
```

Usage:
    from tokengate.config import LimitConfigParser

    parser = LimitConfigParser()
    definitions = parser.parse_file("limits.yaml")
    throttler.load_config(definitions)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictInt, TypeAdapter, ValidationError

from tokengate.core.models import ConfigurationError, LimitDefinition

logger = logging.getLogger(__name__)


class LimitEntry(BaseModel):
    """Schema for one limit inside a configuration document."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    id: str = Field(..., min_length=1)
    interval_seconds: StrictInt = Field(..., alias="intervalSeconds", gt=0)
    tokens_per_interval: StrictInt = Field(..., alias="tokensPerInterval", ge=0)

    def to_definition(self) -> LimitDefinition:
        return LimitDefinition(
            id=self.id,
            interval_seconds=self.interval_seconds,
            tokens_per_interval=self.tokens_per_interval,
        )


_ENTRIES = TypeAdapter(list[LimitEntry])


def _format_errors(exc: ValidationError) -> list[str]:
    errors = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        errors.append(f"{location}: {error['msg']}" if location else error["msg"])
    return errors


class LimitConfigParser:
    """Parse limit definitions from YAML or JSON files and strings."""

    def parse_file(self, filepath: str | Path) -> list[LimitDefinition]:
        """Parse limits from a ``.json``, ``.yaml`` or ``.yml`` file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ConfigurationError: If the format is unsupported or the content invalid
        """
        path = Path(filepath)

        if not path.exists():
            raise FileNotFoundError(f"Limit configuration not found: {filepath}")

        content = path.read_text()

        if path.suffix in (".yaml", ".yml"):
            return self.parse_yaml(content)
        if path.suffix == ".json":
            return self.parse_json(content)
        raise ConfigurationError(
            f"Unsupported file format: {path.suffix}. Use .yaml, .yml, or .json"
        )

    def parse_yaml(self, yaml_content: str) -> list[LimitDefinition]:
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML: {exc}") from exc
        return self.parse_data(data)

    def parse_json(self, json_content: str) -> list[LimitDefinition]:
        try:
            data = json.loads(json_content)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON: {exc}") from exc
        return self.parse_data(data)

    def parse_data(self, data: Any) -> list[LimitDefinition]:
        """Validate already-decoded data and build definitions.

        Accepts either a list of limit objects or a mapping holding that
        list under ``limits``.
        """
        entries = self._entries(data)
        try:
            parsed = _ENTRIES.validate_python(entries)
        except ValidationError as exc:
            raise ConfigurationError(
                "Invalid limit configuration: " + "; ".join(_format_errors(exc))
            ) from exc

        if not parsed:
            raise ConfigurationError("Limit configuration is empty")

        definitions = [entry.to_definition() for entry in parsed]
        logger.info("Parsed %d limit definition(s)", len(definitions))
        return definitions

    def validate(self, data: Any) -> list[str]:
        """Validate a decoded configuration and return error messages.

        Returns:
            List of validation error messages (empty if valid)
        """
        try:
            entries = self._entries(data)
        except ConfigurationError as exc:
            return [str(exc)]

        try:
            parsed = _ENTRIES.validate_python(entries)
        except ValidationError as exc:
            return _format_errors(exc)

        errors: list[str] = []
        if not parsed:
            errors.append("Limit configuration is empty")

        seen: set[str] = set()
        for entry in parsed:
            if entry.id in seen:
                errors.append(f"Duplicate limit id: '{entry.id}'")
            seen.add(entry.id)
        return errors

    @staticmethod
    def _entries(data: Any) -> Any:
        if isinstance(data, dict):
            if "limits" not in data:
                raise ConfigurationError("Configuration mapping must contain a 'limits' list")
            data = data["limits"]
        if not isinstance(data, list):
            raise ConfigurationError(
                f"Limit configuration must be a list, got {type(data).__name__}"
            )
        return data
