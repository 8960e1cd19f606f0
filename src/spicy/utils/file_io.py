"""File IO helpers for schematic documents and chat history files."""

from __future__ import annotations

import codecs
import locale
import os
import tempfile
from pathlib import Path

__all__ = [
    "DOCUMENT_SUFFIX",
    "list_documents",
    "read_text",
    "read_text_with_encoding",
    "write_text",
]

DOCUMENT_SUFFIX = ".asc"

_BOM_MAP: dict[bytes, str] = {
    codecs.BOM_UTF8: "utf-8-sig",
    codecs.BOM_UTF32_LE: "utf-32-le",
    codecs.BOM_UTF32_BE: "utf-32-be",
    codecs.BOM_UTF16_LE: "utf-16-le",
    codecs.BOM_UTF16_BE: "utf-16-be",
}


def read_text(
    path: Path | str,
    *,
    encoding: str | None = None,
    normalize_newlines: bool = True,
) -> str:
    """Read a text file with BOM-aware encoding detection."""

    text, _ = read_text_with_encoding(path, encoding=encoding, normalize_newlines=normalize_newlines)
    return text


def read_text_with_encoding(
    path: Path | str,
    *,
    encoding: str | None = None,
    normalize_newlines: bool = True,
) -> tuple[str, str]:
    """Return the decoded text of ``path`` together with the encoding used.

    Schematics saved by some tools are UTF-16 with a byte order mark, so the
    encoding is sniffed before falling back to UTF-8 and latin-1.
    """

    raw = Path(path).read_bytes()
    detected = encoding or _detect_encoding(raw)
    text = raw.decode(detected, errors="replace")
    text = _strip_bom(text)
    if normalize_newlines:
        text = _normalize_newlines(text)
    return text, detected


def write_text(
    path: Path | str,
    content: str,
    *,
    encoding: str = "utf-8",
    atomic: bool = True,
) -> Path:
    """Write text to disk, replacing the target atomically by default."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    if encoding in {"utf-16-le", "utf-16-be", "utf-32-le", "utf-32-be"}:
        # Explicit-endian codecs do not emit a BOM; keep the file recognizable.
        content = "\ufeff" + content
    if not atomic:
        with target.open("w", encoding=encoding, newline="") as handle:
            handle.write(content)
        return target

    descriptor, tmp_name = tempfile.mkstemp(
        dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(descriptor, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    finally:
        if os.path.exists(tmp_name):  # pragma: no cover - cleanup path
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
    return target


def list_documents(root: Path | str, *, suffix: str = DOCUMENT_SUFFIX) -> list[str]:
    """Return document paths under ``root`` relative to it, sorted."""

    base = Path(root).expanduser()
    if not base.is_dir():
        return []
    found: list[str] = []
    for candidate in base.rglob(f"*{suffix}"):
        if not candidate.is_file():
            continue
        relative = candidate.relative_to(base)
        if any(part.startswith(".") for part in relative.parts[:-1]):
            continue
        found.append(relative.as_posix())
    return sorted(found)


def _detect_encoding(raw: bytes) -> str:
    for bom, name in _BOM_MAP.items():
        if raw.startswith(bom):
            return name

    preferred = locale.getpreferredencoding(False) or "utf-8"
    seen: set[str] = set()
    for candidate in ("utf-8", preferred, "latin-1"):
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        try:
            raw.decode(candidate)
            return candidate
        except UnicodeDecodeError:
            continue
    return "utf-8"


def _normalize_newlines(text: str) -> str:
    if "\r" not in text:
        return text
    text = text.replace("\r\n", "\n")
    return text.replace("\r", "\n")


def _strip_bom(text: str) -> str:
    return text[1:] if text.startswith("\ufeff") else text
