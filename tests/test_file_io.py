"""Tests for document file helpers."""

from __future__ import annotations

import codecs
from pathlib import Path

from spicy.utils.file_io import list_documents, read_text, read_text_with_encoding, write_text


def test_read_utf16_schematic_with_bom(tmp_path: Path) -> None:
    target = tmp_path / "amp.asc"
    target.write_bytes(codecs.BOM_UTF16_LE + "Version 4\r\nSHEET 1 880 680\r\n".encode("utf-16-le"))

    text, encoding = read_text_with_encoding(target)

    assert text == "Version 4\nSHEET 1 880 680\n"
    assert encoding == "utf-16-le"


def test_read_text_keeps_newlines_when_requested(tmp_path: Path) -> None:
    target = tmp_path / "a.asc"
    target.write_bytes(b"a\r\nb\r\n")

    assert read_text(target, normalize_newlines=False) == "a\r\nb\r\n"
    assert read_text(target) == "a\nb\n"


def test_write_text_preserves_utf16_bom(tmp_path: Path) -> None:
    target = tmp_path / "out.asc"

    write_text(target, "Version 4\n", encoding="utf-16-le")

    assert target.read_bytes().startswith(codecs.BOM_UTF16_LE)
    assert read_text(target) == "Version 4\n"


def test_write_text_is_atomic_and_creates_parents(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "dir" / "file.json"

    write_text(target, "{}")

    assert target.read_text(encoding="utf-8") == "{}"
    assert [path.name for path in target.parent.iterdir()] == ["file.json"]


def test_list_documents_skips_hidden_directories(tmp_path: Path) -> None:
    (tmp_path / "b.asc").write_text("x", encoding="utf-8")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "a.asc").write_text("x", encoding="utf-8")
    (tmp_path / ".spicy").mkdir()
    (tmp_path / ".spicy" / "hidden.asc").write_text("x", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("x", encoding="utf-8")

    assert list_documents(tmp_path) == ["b.asc", "sub/a.asc"]
    assert list_documents(tmp_path / "missing") == []
