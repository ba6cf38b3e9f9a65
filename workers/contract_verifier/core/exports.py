"""
Export lister — read the export table of a compiled wasm module.

Only function-kind exports are returned, in module order. Runtime hooks
the host calls on its own (initialisation, allocator) are filtered out.
"""
import logging
from typing import FrozenSet, List

import wasmtime

from contract_verifier.errors import ExportParseError

logger = logging.getLogger(__name__)

RESERVED_EXPORTS: FrozenSet[str] = frozenset({"_initialize", "alloc"})

_engine = None


def _get_engine() -> wasmtime.Engine:
    """Engine used for parsing only; created once per process."""
    global _engine
    if _engine is None:
        _engine = wasmtime.Engine()
    return _engine


def list_exports(data: bytes) -> List[str]:
    """
    Return the public function exports of wasm module *data*.

    Raises
    ------
    ExportParseError
        If *data* is not a valid wasm binary module.
    """
    if not isinstance(data, (bytes, bytearray)):
        raise ExportParseError("wasm module must be bytes")
    try:
        # Passing bytes (never str) keeps wasmtime from treating input as WAT.
        module = wasmtime.Module(_get_engine(), bytes(data))
    except wasmtime.WasmtimeError as e:
        raise ExportParseError(f"Invalid wasm module: {e}") from e

    names: List[str] = []
    for export in module.exports:
        if not isinstance(export.type, wasmtime.FuncType):
            continue
        if export.name in RESERVED_EXPORTS:
            continue
        names.append(export.name)

    logger.debug(f"Module exports {len(names)} public function(s)")
    return names
