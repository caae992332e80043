"""JSON manifest parser.

A manifest maps profile short ids to the rule short ids they select:

    {"product_name": "al2023", "rules": {...},
     "profiles": {"cis": {"rules": ["aide_build_database", ...]}, ...}}

Missing or ill-typed keys are tolerated; only unreadable or unparseable
files are errors.
"""

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from ssgkb.db.models import Manifest, Profile, ProfileRule
from ssgkb.errors import InvalidFormatError, IOReadError

MANIFEST_FILENAME_RE = re.compile(r"^manifest-(.+)\.json$")


@dataclass
class ParsedManifest:
    """A manifest with its profiles and their rule listings."""

    manifest: Manifest
    profiles: list[Profile]
    profile_rules: list[ProfileRule]


def parse_manifest_filename(path: str | Path) -> tuple[str, str]:
    """Split a manifest file name into (id, product).

    Raises:
        InvalidFormatError: If the name does not follow the manifest convention.
    """
    name = Path(path).name
    match = MANIFEST_FILENAME_RE.match(name)
    if not match:
        raise InvalidFormatError(f"not a manifest file name: {name}", details={"path": str(path)})
    return name[: -len(".json")], match.group(1)


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def parse_manifest(path: str | Path) -> ParsedManifest:
    """Parse a product manifest.

    Args:
        path: Path to manifest-{product}.json.

    Returns:
        ParsedManifest with one Profile per profiles key (sorted by key) and
        one ProfileRule per listed rule.

    Raises:
        InvalidFormatError: If the file name is wrong or the JSON is unparseable.
        IOReadError: If the file cannot be read.
    """
    manifest_id, filename_product = parse_manifest_filename(path)
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        raise IOReadError(f"cannot read manifest {path}: {e}", details={"path": str(path)}) from e

    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidFormatError(f"invalid manifest JSON in {path}: {e}", details={"path": str(path)}) from e

    data = _as_dict(data)
    product_name = data.get("product_name")
    product = product_name if isinstance(product_name, str) and product_name else filename_product

    manifest = Manifest(id=manifest_id, product=product)
    profiles: list[Profile] = []
    profile_rules: list[ProfileRule] = []

    for short_id, body in sorted(_as_dict(data.get("profiles")).items()):
        rules = _as_dict(body).get("rules")
        rule_ids = [r for r in rules if isinstance(r, str)] if isinstance(rules, list) else []
        # Keyed on the filename product so manifests sharing a product_name stay apart.
        profile_key = f"{filename_product}:{short_id}"
        profiles.append(
            Profile(
                id=profile_key,
                manifest_id=manifest_id,
                product=product,
                profile_id=short_id,
                rule_count=len(rule_ids),
            )
        )
        profile_rules.extend(ProfileRule(profile_id=profile_key, rule_short_id=r) for r in rule_ids)

    logger.debug(
        "Parsed manifest {}: {} profiles, {} profile rules",
        manifest_id,
        len(profiles),
        len(profile_rules),
    )
    return ParsedManifest(manifest=manifest, profiles=profiles, profile_rules=profile_rules)
