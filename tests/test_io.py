from __future__ import annotations

from pathlib import Path

import fitz
import pytest

from booklens.io import DocumentUnavailableError, load_document, title_from_path


def test_load_text_document(tmp_path: Path) -> None:
    path = tmp_path / "the_quiet-harbour.txt"
    path.write_text(
        "TABLE OF CONTENTS\nArrival ..... 1\nDeparture ..... 9\n\nCHAPTER 1\nThe boats came in.",
        encoding="utf-8",
    )

    document = load_document(path)

    assert document.book_id == "the_quiet-harbour.txt"
    assert document.book_info.title == "the quiet harbour"
    assert document.book_info.author == "Unknown"
    assert document.metadata["kind"] == "text"
    assert [entry.title for entry in document.book_info.table_of_contents] == ["Arrival", "Departure"]
    assert document.content.endswith("The boats came in.")


def test_explicit_book_id(tmp_path: Path) -> None:
    path = tmp_path / "notes.md"
    path.write_text("Some notes.", encoding="utf-8")

    document = load_document(path, book_id="custom-id")

    assert document.book_id == "custom-id"
    assert document.book_info.table_of_contents is None


def test_load_pdf_document_uses_pdf_metadata(tmp_path: Path) -> None:
    path = tmp_path / "novel.pdf"
    doc = fitz.open()
    for number in range(1, 3):
        doc.new_page().insert_text((72, 72), f"Text of page {number}.")
    doc.set_metadata({"title": "A Real Title", "author": "Real Author"})
    doc.save(path)
    doc.close()

    document = load_document(path, last_page=1)

    assert document.book_info.title == "A Real Title"
    assert document.book_info.author == "Real Author"
    assert document.book_info.page_count == 2
    assert "[Page 1]" in document.content
    assert "[Page 2]" not in document.content


def test_missing_document_is_unavailable(tmp_path: Path) -> None:
    with pytest.raises(DocumentUnavailableError):
        load_document(tmp_path / "nowhere.txt")


def test_unsupported_format_is_unavailable(tmp_path: Path) -> None:
    path = tmp_path / "book.epub"
    path.write_bytes(b"PK")

    with pytest.raises(DocumentUnavailableError, match="Unsupported"):
        load_document(path)


def test_corrupt_pdf_is_unavailable(tmp_path: Path) -> None:
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"garbage")

    with pytest.raises(DocumentUnavailableError):
        load_document(path)


def test_title_from_path() -> None:
    assert title_from_path(Path("/books/war_and-peace.pdf")) == "war and peace"
