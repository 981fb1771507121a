"""Conversion of arbitrary task values into persistable JSON data.

Task inputs and outputs may contain anything: functions, model
objects, raw bytes. Persisted copies are made JSON-safe here; the
originals are passed to scorers untouched.
"""

from __future__ import annotations

import hashlib
import json
import os
import traceback
from pathlib import Path
from typing import Any

from pydantic_core import to_jsonable_python

FUNCTION_PLACEHOLDER = "[Function]"

# (magic prefix, extension); RIFF containers are checked separately
_MAGIC_NUMBERS: list[tuple[bytes, str]] = [
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"\xff\xd8\xff", "jpg"),
    (b"GIF87a", "gif"),
    (b"GIF89a", "gif"),
    (b"%PDF", "pdf"),
    (b"PK\x03\x04", "zip"),
    (b"ID3", "mp3"),
    (b"OggS", "ogg"),
    (b"fLaC", "flac"),
]


def _fallback(value: Any) -> Any:
    if callable(value):
        return FUNCTION_PLACEHOLDER
    return repr(value)


def make_serializable(value: Any) -> Any:
    """Convert value into JSON-compatible data.

    Callables become ``"[Function]"``; other objects without a JSON
    form fall back to their ``repr``. Bytes left in place are base64
    encoded, so run ``offload_binary`` first to store them as files.
    """
    return to_jsonable_python(value, fallback=_fallback, bytes_mode="base64")


def to_json_text(value: Any) -> str:
    """JSON text for a persisted field. Never raises on odd values."""
    return json.dumps(make_serializable(value), ensure_ascii=False)


def sniff_extension(data: bytes) -> str:
    """File extension for well-known binary formats, ``bin`` otherwise."""
    if data[:4] == b"RIFF" and len(data) >= 12:
        kind = data[8:12]
        if kind == b"WAVE":
            return "wav"
        if kind == b"WEBP":
            return "webp"
    for prefix, extension in _MAGIC_NUMBERS:
        if data.startswith(prefix):
            return extension
    return "bin"


def _write_file(data: bytes, files_dir: Path) -> Path:
    digest = hashlib.sha256(data).hexdigest()
    path = files_dir / f"{digest}.{sniff_extension(data)}"
    if path.exists():
        return path
    files_dir.mkdir(parents=True, exist_ok=True)

    # Atomic write: write to .tmp then replace
    tmp_file = path.with_name(f"{path.name}.{os.getpid()}.tmp")
    tmp_file.write_bytes(data)
    os.replace(tmp_file, path)
    return path


def offload_binary(value: Any, files_dir: Path | str) -> Any:
    """Replace every binary payload inside value with a file reference.

    Walks dicts, lists and tuples. Each ``bytes``/``bytearray``/
    ``memoryview`` is written once to ``files_dir/<sha256>.<ext>`` and
    replaced by ``{"fileRef": True, "path": ...}``.
    """
    files_dir = Path(files_dir)
    if isinstance(value, (bytes, bytearray, memoryview)):
        path = _write_file(bytes(value), files_dir)
        return {"fileRef": True, "path": str(path)}
    if isinstance(value, dict):
        return {key: offload_binary(item, files_dir) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [offload_binary(item, files_dir) for item in value]
    return value


def serialize_error(exc: BaseException) -> dict[str, str]:
    """Persistable form of a task failure."""
    return {
        "name": type(exc).__name__,
        "message": str(exc),
        "traceback": "".join(traceback.format_exception(exc)),
    }
