# src/backup/format_factory.py - v1
"""Factory for backup format instantiation."""

from __future__ import annotations

import importlib

from kgbridge.backup.base_format import BaseBackupFormat
from kgbridge.core.errors import GraphValidationError

_FORMATS: dict[str, str] = {
    "json": "kgbridge.backup.json_format.JsonBackupFormat",
    "cypher": "kgbridge.backup.cypher_format.CypherBackupFormat",
}


def available_formats() -> list[str]:
    return sorted(_FORMATS)


def create_format(name: str) -> BaseBackupFormat:
    """Instantiate the backup format registered under ``name``.

    Raises:
        GraphValidationError: Unknown format name.
    """
    fqcn = _FORMATS.get(name)
    if fqcn is None:
        raise GraphValidationError(
            f"Unsupported backup format: {name!r}. Available: {', '.join(available_formats())}"
        )
    module_path, class_name = fqcn.rsplit(".", 1)
    mod = importlib.import_module(module_path)
    cls = getattr(mod, class_name)
    return cls()


def detect_format(text: str) -> BaseBackupFormat:
    """Pick the format whose header matches ``text``.

    Raises:
        GraphValidationError: No registered format recognises the payload.
    """
    for name in available_formats():
        fmt = create_format(name)
        if fmt.matches(text):
            return fmt
    raise GraphValidationError("unrecognised backup payload: expected JSON or a Cypher script")
