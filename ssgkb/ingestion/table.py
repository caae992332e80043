"""HTML mapping-table parser.

File name convention: table-{product}-{table_type}.html, where the table
type may itself contain hyphens (table-rhel8-nistrefs-ospp.html).
"""

import re
from dataclasses import dataclass
from pathlib import Path

from bs4 import BeautifulSoup
from loguru import logger

from ssgkb.db.models import Table, TableEntry
from ssgkb.errors import InvalidFormatError, IOReadError

TABLE_FILENAME_RE = re.compile(r"^table-([^-]+)-(.+)\.html$")
WHITESPACE_RE = re.compile(r"\s+")
MIN_CELLS = 4


@dataclass
class ParsedTable:
    """A table and its entries in source row order."""

    table: Table
    entries: list[TableEntry]


def parse_table_filename(path: str | Path) -> tuple[str, str, str]:
    """Split a table file name into (id, product, table_type).

    Raises:
        InvalidFormatError: If the name does not follow the table convention.
    """
    name = Path(path).name
    match = TABLE_FILENAME_RE.match(name)
    if not match:
        raise InvalidFormatError(f"not a table file name: {name}", details={"path": str(path)})
    return name[: -len(".html")], match.group(1), match.group(2)


def _clean(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text).strip()


def _is_banner(style: str) -> bool:
    style = style.replace(" ", "").lower()
    return "text-align:center" in style and "font-size" in style


def _extract_title(soup: BeautifulSoup, fallback: str) -> str:
    banner = soup.find("div", style=lambda s: bool(s) and _is_banner(s))
    if banner is not None:
        text = _clean(banner.get_text())
        if text:
            return text
    if soup.title is not None:
        text = _clean(soup.title.get_text())
        if text:
            return text
    return fallback


def parse_table(path: str | Path) -> ParsedTable:
    """Parse a mapping table.

    The first <table> that has a <tbody> is used. Each row with at least
    four cells becomes an entry (mapping, rule title, description,
    rationale); rows with an empty mapping are skipped.

    Args:
        path: Path to table-{product}-{table_type}.html.

    Returns:
        ParsedTable with entries in source order.

    Raises:
        InvalidFormatError: If the file name does not follow the convention.
        IOReadError: If the file cannot be read.
    """
    table_id, product, table_type = parse_table_filename(path)
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        raise IOReadError(f"cannot read table {path}: {e}", details={"path": str(path)}) from e

    soup = BeautifulSoup(raw, "lxml")
    table = Table(
        id=table_id,
        product=product,
        table_type=table_type,
        title=_extract_title(soup, table_id),
        description="",
    )

    entries: list[TableEntry] = []
    body = None
    for candidate in soup.find_all("table"):
        body = candidate.find("tbody")
        if body is not None:
            break

    if body is None:
        logger.warning("Table {} has no <tbody>; no entries parsed", table_id)
        return ParsedTable(table=table, entries=entries)

    for row in body.find_all("tr", recursive=False):
        cells = row.find_all("td", recursive=False)
        if len(cells) < MIN_CELLS:
            continue
        mapping = _clean(cells[0].get_text())
        if not mapping:
            continue
        entries.append(
            TableEntry(
                table_id=table_id,
                mapping=mapping,
                rule_title=_clean(cells[1].get_text()),
                description=_clean(cells[2].get_text()),
                rationale=_clean(cells[3].get_text()),
            )
        )

    logger.debug("Parsed table {}: {} entries", table_id, len(entries))
    return ParsedTable(table=table, entries=entries)
