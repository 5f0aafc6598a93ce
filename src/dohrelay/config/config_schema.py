"""JSON Schema validation for the dohrelay YAML configuration.

The schema document ships as ``assets/config-schema.json``. Validation is
best-effort: when the document is missing or unreadable a warning is logged
and the mapping is accepted as-is, leaving the typed settings layer to catch
structural problems.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from jsonschema import Draft202012Validator, ValidationError
from jsonschema.exceptions import SchemaError

logger = logging.getLogger(__name__)

SCHEMA_FILENAME = "config-schema.json"

UNKNOWN_KEY_POLICIES = ("ignore", "warn", "error")

# Validators that fire for keys the schema does not describe.
_UNKNOWN_KEY_VALIDATORS = frozenset({"additionalProperties", "unevaluatedProperties"})


def get_default_schema_path() -> Path:
    """Brief: Locate ``assets/config-schema.json``.

    Inputs:
      - None.

    Outputs:
      - Path of the nearest ``assets/config-schema.json`` above this module,
        or the source-checkout location when none exists (the caller reports
        it as missing).
    """

    here = Path(__file__).resolve()
    for ancestor in here.parents:
        candidate = ancestor / "assets" / SCHEMA_FILENAME
        if candidate.is_file():
            return candidate
    # src/dohrelay/config/config_schema.py -> repository root
    return here.parents[3] / "assets" / SCHEMA_FILENAME


def load_validator(schema_path: Path) -> Optional[Draft202012Validator]:
    """Brief: Build a Draft 2020-12 validator, or None when the schema is unusable.

    Inputs:
      - schema_path: Path to the JSON Schema document.

    Outputs:
      - Draft202012Validator, or None after logging why validation is skipped.
    """

    if not schema_path.is_file():
        logger.warning(
            "Configuration schema file %s not found; skipping JSON Schema validation",
            schema_path,
        )
        return None
    try:
        with schema_path.open("r", encoding="utf-8") as f:
            schema = json.load(f)
        Draft202012Validator.check_schema(schema)
    except (OSError, json.JSONDecodeError, SchemaError) as exc:
        logger.warning(
            "Failed to load configuration schema at %s: %s; "
            "skipping JSON Schema validation",
            schema_path,
            exc,
        )
        return None
    return Draft202012Validator(schema)


def _describe(err: ValidationError) -> str:
    where = "/".join(str(p) for p in err.path) or "<root>"
    rule = "/".join(str(p) for p in err.schema_path)
    return f"- {where}: {err.message} (schema: {rule})"


def _report(errors: Iterable[ValidationError], config_path: Optional[str]) -> str:
    lines = [f"Invalid configuration in {config_path or '<config dict>'}:"]
    lines.extend(_describe(e) for e in errors)
    return "\n".join(lines)


def _partition(
    errors: Iterable[ValidationError],
) -> Tuple[List[ValidationError], List[ValidationError]]:
    """Brief: Split errors into (unknown-key errors, everything else)."""

    unknown: List[ValidationError] = []
    other: List[ValidationError] = []
    for err in errors:
        (unknown if err.validator in _UNKNOWN_KEY_VALIDATORS else other).append(err)
    return unknown, other


def validate_config(
    cfg: Dict[str, Any],
    *,
    schema_path: Optional[Path] = None,
    config_path: Optional[str] = "./config/config.yaml",
    unknown_keys: str = "warn",
) -> None:
    """Brief: Check a parsed configuration mapping against the JSON Schema.

    Inputs:
      - cfg: Top-level mapping loaded from YAML.
      - schema_path: Explicit schema document; defaults to
        get_default_schema_path().
      - config_path: Used only to label error messages.
      - unknown_keys: What to do about keys the schema does not describe:
        "ignore", "warn" (log, continue) or "error" (raise).

    Outputs:
      - None when the mapping is acceptable.

    Raises:
      - ValueError: for any type, range or shape violation (unknown keys are
        listed too), for unknown keys under the "error" policy, and for an
        unrecognized policy name.

    Example:
      >>> validate_config({"listen": {"host": "127.0.0.1", "port": 8053}})
    """
    if unknown_keys not in UNKNOWN_KEY_POLICIES:
        raise ValueError(
            f"unknown_keys policy must be 'ignore', 'warn', or 'error', got {unknown_keys!r}"
        )

    validator = load_validator(schema_path or get_default_schema_path())
    if validator is None:
        return None

    errors = sorted(validator.iter_errors(cfg), key=lambda e: list(e.path))
    unknown, other = _partition(errors)
    if other:
        raise ValueError(_report(other + unknown, config_path))
    if not unknown or unknown_keys == "ignore":
        return None

    message = _report(unknown, config_path)
    if unknown_keys == "warn":
        logger.warning(message)
        return None
    raise ValueError(message)
