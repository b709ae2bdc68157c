"""Table-of-contents detection for extracted book text."""

from __future__ import annotations

import re
from typing import List, Optional

from ..schema import TocEntry

__all__ = ["TOC_HEADERS", "extract_table_of_contents"]

TOC_HEADERS = ("TABLE OF CONTENTS", "CONTENTS", "Table of Contents")
TOC_TERMINATORS = ("\nCHAPTER 1", "\nChapter 1", "\nINTRODUCTION", "\nPREFACE")

# "Title ........ 12", "Title      12", "Title … 12"
_TOC_ENTRY = re.compile(r"^(.*?)(?:\.{2,}|[ \t]{3,}|…+)[ \t]*(\d+)[ \t]*$", re.MULTILINE)


def extract_table_of_contents(text: str) -> Optional[List[TocEntry]]:
    """Parse a contents listing near the top of the book, if there is one."""

    toc_start = -1
    for header in TOC_HEADERS:
        index = text.find(header)
        if index != -1:
            toc_start = index + len(header)
            break
    if toc_start == -1:
        return None

    toc_end = len(text)
    for terminator in TOC_TERMINATORS:
        index = text.find(terminator, toc_start)
        if index != -1 and index < toc_end:
            toc_end = index

    region = text[toc_start:toc_end].strip()
    entries = [
        TocEntry(title=match.group(1).strip(), page=int(match.group(2)))
        for match in _TOC_ENTRY.finditer(region)
        if match.group(1).strip()
    ]
    return entries or None
