"""
Schema validation for board-sync rules files.

The parsed YAML is checked against the packaged JSON Schema before any rule
object is built. Every violation is reported at once, ordered by location.
"""

import json
from functools import lru_cache
from pathlib import Path

import jsonschema

from boardsync.lib.errors import ConfigurationError

SCHEMAS_DIR = Path(__file__).parent.parent / "schemas"


class ValidationError(ConfigurationError):
    """The rules document does not match its schema."""

    def __init__(self, schema_name: str, problems: list[tuple[str, str]]):
        self.schema_name = schema_name
        self.problems = problems
        lines = [f"{path}: {message}" for path, message in problems]
        super().__init__(f"[{schema_name}] " + "; ".join(lines))


@lru_cache(maxsize=None)
def load_schema(schema_name: str) -> dict:
    path = SCHEMAS_DIR / f"{schema_name}.schema.json"
    if not path.exists():
        raise ConfigurationError(f"Schema file not found: {path}")
    return json.loads(path.read_text())


def _location(error: jsonschema.ValidationError) -> str:
    return ".".join(str(p) for p in error.absolute_path) or "(root)"


def validate(data: dict, schema_name: str) -> None:
    """
    Validate a parsed document against the named schema.

    Raises:
        ValidationError: listing every violation, ordered by location
    """
    schema = load_schema(schema_name)
    validator_cls = jsonschema.validators.validator_for(schema)
    errors = sorted(validator_cls(schema).iter_errors(data), key=lambda e: list(map(str, e.absolute_path)))
    if errors:
        raise ValidationError(schema_name, [(_location(e), e.message) for e in errors])
