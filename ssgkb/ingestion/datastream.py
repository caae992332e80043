"""Streaming SCAP data-stream parser.

Data-stream collections are large (tens of MB for a single product), so the
file is read with lxml's iterparse: the first ds:data-stream's attributes are
captured, everything before the first XCCDF Benchmark is discarded as it is
read, and reading stops at the end of that Benchmark. Nothing after it is
parsed.

Element matching uses local names only, so XCCDF 1.2 namespace prefixes
(xccdf-1.2:, xccdf:, none) do not matter.

File name convention: ssg-{product}-ds.xml
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from loguru import logger
from lxml import etree

from ssgkb.db.models import (
    Benchmark,
    DataStream,
    DSGroup,
    DSProfile,
    DSProfileRule,
    DSRule,
    DSRuleIdentifier,
    DSRuleReference,
)
from ssgkb.errors import InvalidFormatError, IOReadError
from ssgkb.types import Severity

DS_FILENAME_RE = re.compile(r"^ssg-([^-]+)-ds\.xml$")

# Mixed-content normalisation, compiled once.
BR_TAG_RE = re.compile(r"<(?:[\w.-]+:)?br\b[^>]*/?>")
ANY_TAG_RE = re.compile(r"<[^>]+>")
WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class ParsedDataStream:
    """The first data stream of a collection and the contents of its benchmark."""

    data_stream: DataStream
    benchmark: Benchmark
    profiles: list[DSProfile]
    groups: list[DSGroup]
    rules: list[DSRule]


def parse_data_stream_filename(filename: str | Path) -> str:
    """Return the product encoded in a data-stream file name.

    Raises:
        InvalidFormatError: If the name does not match ssg-{product}-ds.xml.
    """
    name = Path(filename).name
    match = DS_FILENAME_RE.match(name)
    if not match:
        raise InvalidFormatError(
            f"invalid data stream filename format: {name} (expected ssg-<product>-ds.xml)",
            details={"filename": name},
        )
    return match.group(1)


def _local(elem: etree._Element) -> str:
    return etree.QName(elem).localname


def _children(elem: etree._Element, name: str) -> list[etree._Element]:
    return [child for child in elem if isinstance(child.tag, str) and _local(child) == name]


def _child(elem: etree._Element, name: str) -> etree._Element | None:
    for child in elem:
        if isinstance(child.tag, str) and _local(child) == name:
            return child
    return None


def _plain(elem: etree._Element | None) -> str:
    """Character data of an element (nested text included), whitespace collapsed."""
    if elem is None:
        return ""
    return WHITESPACE_RE.sub(" ", "".join(elem.itertext())).strip()


def normalize_mixed_content(elem: etree._Element | None) -> str:
    """Flatten XHTML mixed content to plain text.

    Line breaks (<html:br/>) become newlines, every other tag is dropped,
    each line is trimmed and so is the whole. Markup-significant characters
    stay escaped, so the result never contains '<' or '>'.
    """
    if elem is None:
        return ""
    markup = etree.tostring(elem, encoding="unicode", with_tail=False)
    open_end = markup.find(">")
    close_start = markup.rfind("<")
    if open_end < 0 or close_start <= open_end:
        return ""
    inner = markup[open_end + 1 : close_start]
    inner = BR_TAG_RE.sub("\n", inner)
    inner = ANY_TAG_RE.sub("", inner)
    inner = inner.replace("&amp;", "&")
    return "\n".join(line.strip() for line in inner.strip().split("\n")).strip()


def _parse_profile(elem: etree._Element, benchmark_id: str) -> DSProfile:
    profile_id = elem.get("id", "")
    selects = _children(elem, "select")
    return DSProfile(
        id=profile_id,
        benchmark_id=benchmark_id,
        title=normalize_mixed_content(_child(elem, "title")),
        description=normalize_mixed_content(_child(elem, "description")),
        version=_plain(_child(elem, "version")),
        rule_count=len(selects),
        selected_rules=[
            DSProfileRule(
                benchmark_id=benchmark_id,
                profile_id=profile_id,
                rule_id=sel.get("idref", ""),
                selected=sel.get("selected") == "true",
            )
            for sel in selects
        ],
    )


def _parse_rule(elem: etree._Element, benchmark_id: str, group_id: str) -> DSRule:
    rule_id = elem.get("id", "")
    return DSRule(
        id=rule_id,
        benchmark_id=benchmark_id,
        group_id=group_id,
        title=_plain(_child(elem, "title")),
        description=normalize_mixed_content(_child(elem, "description")),
        rationale=normalize_mixed_content(_child(elem, "rationale")),
        severity=elem.get("severity") or Severity.UNKNOWN.value,
        selected=elem.get("selected") == "true",
        weight=elem.get("weight", ""),
        version=_plain(_child(elem, "version")),
        references=[
            DSRuleReference(
                benchmark_id=benchmark_id,
                rule_id=rule_id,
                href=ref.get("href", ""),
                ref_id=_plain(ref),
            )
            for ref in _children(elem, "reference")
        ],
        identifiers=[
            DSRuleIdentifier(
                benchmark_id=benchmark_id,
                rule_id=rule_id,
                system=ident.get("system", ""),
                identifier=_plain(ident),
            )
            for ident in _children(elem, "ident")
        ],
    )


def _walk_groups(
    parent: etree._Element,
    benchmark_id: str,
    parent_id: str,
    level: int,
    groups: list[DSGroup],
    rules: list[DSRule],
) -> None:
    """Emit groups in pre-order, each followed by its own rules."""
    for elem in _children(parent, "Group"):
        group_id = elem.get("id", "")
        group_rules = [_parse_rule(r, benchmark_id, group_id) for r in _children(elem, "Rule")]
        subgroups = _children(elem, "Group")
        groups.append(
            DSGroup(
                id=group_id,
                benchmark_id=benchmark_id,
                parent_id=parent_id,
                title=_plain(_child(elem, "title")),
                description=normalize_mixed_content(_child(elem, "description")),
                level=level,
                group_count=len(subgroups),
                rule_count=len(group_rules),
            )
        )
        rules.extend(group_rules)
        _walk_groups(elem, benchmark_id, group_id, level + 1, groups, rules)


def _read_first_benchmark(source: str | BinaryIO) -> tuple[dict[str, str], etree._Element | None]:
    """Stream tokens until the first Benchmark closes.

    Returns:
        Tuple of (first data-stream attributes, benchmark element or None).
    """
    stream_attrs: dict[str, str] = {}
    inside_benchmark = False
    context = etree.iterparse(
        source,
        events=("start", "end"),
        huge_tree=True,
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        remove_pis=True,
    )
    for event, elem in context:
        name = _local(elem)
        if event == "start":
            if name == "data-stream" and not stream_attrs:
                stream_attrs = {
                    "id": elem.get("id", ""),
                    "scap_version": elem.get("scap-version", ""),
                    "timestamp": elem.get("timestamp", ""),
                }
            elif name == "Benchmark":
                inside_benchmark = True
            continue

        if name == "Benchmark":
            return stream_attrs, elem
        if not inside_benchmark:
            # Already seen; free it (and earlier siblings) to keep memory flat.
            elem.clear()
            while elem.getprevious() is not None:
                del elem.getparent()[0]
    return stream_attrs, None


def parse_data_stream(source: str | Path | BinaryIO, filename: str | None = None) -> ParsedDataStream:
    """Parse the first data stream and benchmark of a SCAP collection.

    Args:
        source: Path to the XML file or a binary stream over it.
        filename: Name used for the product lookup; defaults to the path's name.

    Returns:
        ParsedDataStream with profiles, groups (pre-order) and rules.

    Raises:
        InvalidFormatError: Bad file name, malformed XML, or no data stream /
            benchmark in the collection.
        IOReadError: If the file cannot be read.
    """
    if filename is None:
        if not isinstance(source, (str, Path)):
            raise InvalidFormatError("a filename is required when parsing from a stream")
        filename = Path(source).name
    product = parse_data_stream_filename(filename)

    if isinstance(source, Path):
        source = str(source)
    try:
        stream_attrs, bench = _read_first_benchmark(source)
    except etree.XMLSyntaxError as e:
        raise InvalidFormatError(f"failed to read XML in {filename}: {e}", details={"filename": filename}) from e
    except OSError as e:
        raise IOReadError(f"cannot read data stream {filename}: {e}", details={"filename": filename}) from e

    if not stream_attrs.get("id"):
        raise InvalidFormatError("no data stream found in collection", details={"filename": filename})
    if bench is None:
        raise InvalidFormatError("no XCCDF benchmark found in data stream", details={"filename": filename})

    data_stream = DataStream(
        id=stream_attrs["id"],
        product=product,
        scap_version=stream_attrs["scap_version"],
        timestamp=stream_attrs["timestamp"],
    )

    benchmark_id = bench.get("id", "")
    status = _child(bench, "status")
    profiles = [_parse_profile(p, benchmark_id) for p in _children(bench, "Profile")]
    groups: list[DSGroup] = []
    rules: list[DSRule] = []
    _walk_groups(bench, benchmark_id, "", 0, groups, rules)

    benchmark = Benchmark(
        id=benchmark_id,
        data_stream_id=data_stream.id,
        title=_plain(_child(bench, "title")),
        description=normalize_mixed_content(_child(bench, "description")),
        version=_plain(_child(bench, "version")),
        status=_plain(status),
        status_date=status.get("date", "") if status is not None else "",
        profile_count=len(profiles),
        group_count=len(groups),
        rule_count=len(rules),
    )

    logger.debug(
        "Parsed data stream {} ({}): {} profiles, {} groups, {} rules",
        data_stream.id,
        benchmark_id,
        len(profiles),
        len(groups),
        len(rules),
    )
    return ParsedDataStream(
        data_stream=data_stream,
        benchmark=benchmark,
        profiles=profiles,
        groups=groups,
        rules=rules,
    )
