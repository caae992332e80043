"""HTML guide parser.

Recovers the group/rule tree of an SSG HTML guide from the treetable
annotations (data-tt-id / data-tt-parent-id) that every tree row carries.
The document is walked once to build an id -> element map, an id -> parent
map and an anchor map; every later lookup is a dictionary hit.

File name convention: ssg-{product}-guide-{short_id}.html
"""

import re
from dataclasses import dataclass
from pathlib import Path

from bs4 import BeautifulSoup, Tag
from loguru import logger

from ssgkb.db.models import Group, Guide, Reference, Rule
from ssgkb.errors import InvalidFormatError, IOReadError
from ssgkb.types import GROUP_ID_PREFIX, RULE_ID_PREFIX, Severity

GUIDE_FILENAME_RE = re.compile(r"^ssg-([^-]+)-guide-(.+)\.html$")
PROFILE_ID_RE = re.compile(r"xccdf_org\.ssgproject\.content_profile_[a-z0-9_]+")
SEVERITY_CLASS_RE = re.compile(r"^severity-(low|medium|high)$")
WHITESPACE_RE = re.compile(r"\s+")

CHILDREN_PREFIX = "children-"
TITLE_SUFFIX = " | OpenSCAP Security Guide"
GUIDE_HEADING = "Guide to the Secure Configuration"
MAX_TEXT_TITLE_LEN = 200
DEFAULT_SEVERITY = Severity.MEDIUM.value


@dataclass
class ParsedGuide:
    """Everything recovered from one guide file."""

    guide: Guide
    groups: list[Group]
    rules: list[Rule]


def parse_guide_filename(path: str | Path) -> tuple[str, str, str]:
    """Split a guide file name into (id, product, short_id).

    Example: guides/ssg-al2023-guide-cis.html -> ("ssg-al2023-guide-cis", "al2023", "cis")

    Raises:
        InvalidFormatError: If the name does not follow the guide convention.
    """
    name = Path(path).name
    match = GUIDE_FILENAME_RE.match(name)
    if not match:
        raise InvalidFormatError(f"not a guide file name: {name}", details={"path": str(path)})
    return name[: -len(".html")], match.group(1), match.group(2)


def _clean(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text).strip()


def _normalize_parent(parent_id: str) -> str:
    if parent_id.startswith(CHILDREN_PREFIX):
        return parent_id[len(CHILDREN_PREFIX) :]
    return parent_id


def _short_id(full_id: str, prefix: str) -> str:
    return full_id[len(prefix) :] if full_id.startswith(prefix) else full_id


def _humanize(short_id: str) -> str:
    return short_id.replace("_", " ").title()


def _extract_metadata(soup: BeautifulSoup, fallback: str) -> tuple[str, str]:
    """Return (profile_id, title) using the documented precedence."""
    profile_id = ""
    title = ""

    for row in soup.find_all("tr"):
        th = row.find("th")
        td = row.find("td")
        if th is None or td is None:
            continue
        label = th.get_text(strip=True)
        if label == "Profile ID" and not profile_id:
            profile_id = td.get_text(strip=True)
        elif label == "Profile Title" and not title:
            title = _clean(td.get_text())

    if not title:
        for heading in soup.find_all("h2"):
            text = _clean(heading.get_text())
            if GUIDE_HEADING in text:
                title = text
                break

    if not title and soup.title is not None:
        text = _clean(soup.title.get_text())
        if TITLE_SUFFIX in text:
            text = text[: text.index(TITLE_SUFFIX)].strip()
        title = text

    match = PROFILE_ID_RE.search(profile_id)
    if match:
        profile_id = match.group(0)

    return profile_id, title or fallback


def _anchor_map(soup: BeautifulSoup) -> dict[str, str]:
    anchors: dict[str, str] = {}
    for a in soup.find_all("a", href=True):
        href = a["href"]
        if "#" not in href:
            continue
        fragment = href.split("#", 1)[1]
        if fragment and fragment not in anchors:
            text = _clean(a.get_text())
            if text:
                anchors[fragment] = text
    return anchors


def _first_text(element: Tag, selector: str) -> str:
    found = element.select_one(selector)
    return found.get_text(" ", strip=True) if found is not None else ""


def _severity(element: Tag) -> str:
    candidates = [element, *element.find_all(class_=SEVERITY_CLASS_RE)]
    for candidate in candidates:
        for cls in candidate.get("class") or []:
            match = SEVERITY_CLASS_RE.match(cls)
            if match:
                return match.group(1)

    text = _first_text(element, ".severity").lower()
    if text in {s.value for s in Severity}:
        return text
    return DEFAULT_SEVERITY


def _references(element: Tag, guide_id: str, rule_id: str) -> list[Reference]:
    refs: list[Reference] = []
    for table in element.select("table.identifiers"):
        for row in table.find_all("tr"):
            cells = row.find_all(["td", "th"], recursive=False)
            if len(cells) < 2:
                continue
            if cells[1].find("table") is not None:
                continue
            anchor = cells[0].find("a")
            value = _clean(cells[1].get_text())
            if anchor is not None:
                href = anchor.get("href", "")
                label = _clean(anchor.get_text())
            else:
                href = ""
                label = _clean(cells[0].get_text())
            if not label or not value:
                continue
            refs.append(Reference(guide_id=guide_id, rule_id=rule_id, href=href, label=label, value=value))
    return refs


def _group_title(group_id: str, element: Tag | None, anchors: dict[str, str]) -> str:
    if group_id in anchors:
        return anchors[group_id]
    if element is not None:
        text = _clean(element.get_text(" "))
        if "Group contains" in text:
            text = text[: text.index("Group contains")].strip()
        if text.startswith("Group"):
            text = text[len("Group") :].strip()
        if text and len(text) < MAX_TEXT_TITLE_LEN:
            return text
    return _humanize(_short_id(group_id, GROUP_ID_PREFIX))


def _rule_title(rule_id: str, element: Tag | None) -> str:
    if element is not None:
        for label in element.select(".label-default"):
            if label.get_text(strip=True) != "Rule" or label.parent is None:
                continue
            text = _clean(label.parent.get_text(" "))
            if text.startswith("Rule"):
                text = text[len("Rule") :].strip()
            if text:
                return text
    return _humanize(_short_id(rule_id, RULE_ID_PREFIX))


def _level(node_id: str, parents: dict[str, str]) -> int:
    """Depth below the benchmark, following parent links."""
    level = 0
    seen = {node_id}
    current = parents.get(node_id, "")
    while current and "benchmark" not in current and current not in seen:
        level += 1
        seen.add(current)
        current = parents.get(current, "")
    return level


def parse_guide(path: str | Path) -> ParsedGuide:
    """Parse an HTML guide into its guide, group and rule rows.

    Args:
        path: Path to ssg-{product}-guide-{short_id}.html.

    Returns:
        ParsedGuide with groups and rules in document order and recomputed
        child counts. A guide without rules yields an empty rule list.

    Raises:
        InvalidFormatError: If the file name does not follow the convention.
        IOReadError: If the file cannot be read.
    """
    guide_id, product, short_id = parse_guide_filename(path)
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        raise IOReadError(f"cannot read guide {path}: {e}", details={"path": str(path)}) from e

    html = raw.decode("utf-8", errors="replace")
    soup = BeautifulSoup(html, "lxml")
    profile_id, title = _extract_metadata(soup, guide_id)
    guide = Guide(
        id=guide_id,
        product=product,
        profile_id=profile_id,
        short_id=short_id,
        title=title,
        html_content=html,
    )

    # Single walk: node order, element map and parent map.
    order: list[str] = []
    elements: dict[str, Tag] = {}
    parents: dict[str, str] = {}
    for element in soup.find_all(attrs={"data-tt-id": True}):
        raw_id = element["data-tt-id"]
        node_id = _normalize_parent(raw_id)
        parent_id = _normalize_parent(element.get("data-tt-parent-id", ""))
        if parent_id and node_id not in parents:
            parents[node_id] = parent_id
        if raw_id.startswith(CHILDREN_PREFIX) or node_id in elements:
            continue
        elements[node_id] = element
        order.append(node_id)

    anchors = _anchor_map(soup)
    groups: list[Group] = []
    rules: list[Rule] = []

    for node_id in order:
        element = elements[node_id]
        parent_id = parents.get(node_id, "")
        level = _level(node_id, parents)

        if "content_group_" in node_id:
            groups.append(
                Group(
                    id=node_id,
                    guide_id=guide_id,
                    parent_id="" if "benchmark" in parent_id else parent_id,
                    title=_group_title(node_id, element, anchors),
                    description=_first_text(element, ".description, .profile-description"),
                    level=level,
                    group_count=0,
                    rule_count=0,
                )
            )
        elif "content_rule_" in node_id:
            rules.append(
                Rule(
                    id=node_id,
                    guide_id=guide_id,
                    group_id=parent_id,
                    short_id=_short_id(node_id, RULE_ID_PREFIX),
                    title=_rule_title(node_id, element),
                    description=_first_text(element, ".description"),
                    rationale=_first_text(element, ".rationale"),
                    severity=_severity(element),
                    level=level,
                    references=_references(element, guide_id, node_id),
                )
            )

    _recount(groups, rules)
    logger.debug("Parsed guide {}: {} groups, {} rules", guide_id, len(groups), len(rules))
    return ParsedGuide(guide=guide, groups=groups, rules=rules)


def _recount(groups: list[Group], rules: list[Rule]) -> None:
    """Recompute child counts over the materialised nodes."""
    by_id = {g.id: g for g in groups}
    for group in groups:
        group.group_count = 0
        group.rule_count = 0
    for rule in rules:
        parent = by_id.get(rule.group_id)
        if parent is not None:
            parent.rule_count += 1
    for group in groups:
        parent = by_id.get(group.parent_id) if group.parent_id else None
        if parent is not None:
            parent.group_count += 1
