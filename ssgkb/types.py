"""Shared type definitions for ssgkb.

This module contains enums that are used across the parsers, the store,
the importer and the API to keep identifier spaces consistent.
"""

import enum
import re


class ObjectType(str, enum.Enum):
    """Node types that can appear on either end of a cross-reference edge."""

    GUIDE = "guide"
    TABLE = "table"
    MANIFEST = "manifest"
    DATASTREAM = "datastream"
    RULE = "rule"
    PROFILE = "profile"
    PRODUCT = "product"
    CCE = "cce"


class LinkType(str, enum.Enum):
    """Shared identifier space an edge was derived from."""

    RULE_ID = "rule_id"
    CCE = "cce"
    PRODUCT = "product"
    PROFILE_ID = "profile_id"


class Severity(str, enum.Enum):
    """Rule severities as published in XCCDF."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    UNKNOWN = "unknown"


class JobState(str, enum.Enum):
    """Import job lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.STOPPED)


# Identifier nodes are the targets extracted edges point at; object nodes are
# the parsed files themselves.
IDENTIFIER_TYPES: frozenset[str] = frozenset(
    {ObjectType.RULE.value, ObjectType.CCE.value, ObjectType.PRODUCT.value, ObjectType.PROFILE.value}
)

RULE_ID_PREFIX = "xccdf_org.ssgproject.content_rule_"
GROUP_ID_PREFIX = "xccdf_org.ssgproject.content_group_"
PROFILE_ID_PREFIX = "xccdf_org.ssgproject.content_profile_"

# Compiled identifier patterns shared by parsers and the cross-reference extractor
RULE_ID_PATTERN = re.compile(r"xccdf_org\.ssgproject\.content_rule_([a-z0-9_]+)")
CCE_PATTERN = re.compile(r"CCE-\d+-\d+")

CCE_SYSTEMS: frozenset[str] = frozenset(
    {"https://nvd.nist.gov/cce/index.cfm", "http://cce.mitre.org"}
)
