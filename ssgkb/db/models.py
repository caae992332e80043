"""SQLAlchemy ORM models for the SSG knowledge base schema.

Tables:
    - ssg_guides / ssg_groups / ssg_rules / ssg_references: HTML guides and
      the group/rule tree recovered from them
    - ssg_tables / ssg_table_entries: HTML mapping tables (CCE, NIST, STIG...)
    - ssg_manifests / ssg_profiles / ssg_profile_rules: JSON manifests
    - ssg_data_streams / ssg_benchmarks / ssg_ds_*: SCAP XML data streams
    - ssg_cross_references: typed edges between all of the above

The same XCCDF group, rule and profile ids are published in many guides and
benchmarks, so tree rows are keyed by their owner plus the XCCDF id. Owned
rows (references, selections, identifiers, entries) use integer surrogate
keys and are replaced wholesale whenever their owner is saved.

Only portable column types are used so the schema works with both SQLite
(default, tests) and PostgreSQL.
"""

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKeyConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    def to_dict(self, exclude: Iterable[str] = ()) -> dict[str, Any]:
        """Serialize column values and loaded owned collections to plain data."""
        skip = set(exclude)
        mapper = sa_inspect(self).mapper
        data: dict[str, Any] = {}
        for attr in mapper.column_attrs:
            if attr.key in skip:
                continue
            value = getattr(self, attr.key)
            data[attr.key] = value.isoformat() if isinstance(value, datetime) else value
        for rel in mapper.relationships:
            if rel.key not in skip:
                data[rel.key] = [child.to_dict() for child in getattr(self, rel.key)]
        return data


class TimestampMixin:
    """created_at/updated_at columns maintained by the ORM."""

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


# ---------------------------------------------------------------------------
# HTML guides
# ---------------------------------------------------------------------------


class Guide(TimestampMixin, Base):
    """An HTML guide for one product/profile pair."""

    __tablename__ = "ssg_guides"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)  # ssg-al2023-guide-cis
    product: Mapped[str] = mapped_column(String(64), index=True, default="")
    profile_id: Mapped[str] = mapped_column(String(255), index=True, default="")
    short_id: Mapped[str] = mapped_column(String(255), index=True, default="")
    title: Mapped[str] = mapped_column(Text, default="")
    html_content: Mapped[str] = mapped_column(Text, default="")


class Group(TimestampMixin, Base):
    """An XCCDF group recovered from an HTML guide."""

    __tablename__ = "ssg_groups"

    guide_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    parent_id: Mapped[str] = mapped_column(String(255), index=True, default="")
    title: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    level: Mapped[int] = mapped_column(Integer, default=0)
    group_count: Mapped[int] = mapped_column(Integer, default=0)
    rule_count: Mapped[int] = mapped_column(Integer, default=0)


class Rule(TimestampMixin, Base):
    """An XCCDF rule recovered from an HTML guide."""

    __tablename__ = "ssg_rules"

    guide_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    group_id: Mapped[str] = mapped_column(String(255), index=True, default="")
    short_id: Mapped[str] = mapped_column(String(255), index=True, default="")
    title: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    rationale: Mapped[str] = mapped_column(Text, default="")
    severity: Mapped[str] = mapped_column(String(16), index=True, default="medium")
    level: Mapped[int] = mapped_column(Integer, default=0)

    references: Mapped[list["Reference"]] = relationship(
        cascade="all, delete-orphan", lazy="selectin", order_by="Reference.id"
    )


class Reference(Base):
    """A rule reference row (e.g. nist CM-6(a), cis-csc 1, 11, 12)."""

    __tablename__ = "ssg_references"
    __table_args__ = (
        ForeignKeyConstraint(
            ["guide_id", "rule_id"], ["ssg_rules.guide_id", "ssg_rules.id"], ondelete="CASCADE"
        ),
        Index("ix_ssg_references_rule", "guide_id", "rule_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guide_id: Mapped[str] = mapped_column(String(255))
    rule_id: Mapped[str] = mapped_column(String(255))
    href: Mapped[str] = mapped_column(Text, default="")
    label: Mapped[str] = mapped_column(Text, default="")
    value: Mapped[str] = mapped_column(Text, default="")


# ---------------------------------------------------------------------------
# HTML tables
# ---------------------------------------------------------------------------


class Table(TimestampMixin, Base):
    """A mapping table (rules to CCE, NIST, STIG... identifiers)."""

    __tablename__ = "ssg_tables"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)  # table-al2023-cces
    product: Mapped[str] = mapped_column(String(64), index=True, default="")
    table_type: Mapped[str] = mapped_column(String(128), index=True, default="")
    title: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")


class TableEntry(TimestampMixin, Base):
    """One row of a mapping table; id order is source row order."""

    __tablename__ = "ssg_table_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_id: Mapped[str] = mapped_column(String(255), index=True)
    mapping: Mapped[str] = mapped_column(String(255), index=True, default="")
    rule_title: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    rationale: Mapped[str] = mapped_column(Text, default="")


# ---------------------------------------------------------------------------
# JSON manifests
# ---------------------------------------------------------------------------


class Manifest(TimestampMixin, Base):
    """A product manifest listing profiles and their rule selections."""

    __tablename__ = "ssg_manifests"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)  # manifest-al2023
    product: Mapped[str] = mapped_column(String(64), index=True, default="")


class Profile(TimestampMixin, Base):
    """A manifest profile, keyed "{manifest file product}:{profile_short}"."""

    __tablename__ = "ssg_profiles"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    manifest_id: Mapped[str] = mapped_column(String(255), index=True)
    product: Mapped[str] = mapped_column(String(64), index=True, default="")
    profile_id: Mapped[str] = mapped_column(String(255), index=True)
    rule_count: Mapped[int] = mapped_column(Integer, default=0)


class ProfileRule(Base):
    """A rule short id listed by a manifest profile."""

    __tablename__ = "ssg_profile_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[str] = mapped_column(String(255), index=True)
    rule_short_id: Mapped[str] = mapped_column(String(255), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


# ---------------------------------------------------------------------------
# SCAP data streams
# ---------------------------------------------------------------------------


class DataStream(TimestampMixin, Base):
    """A SCAP source data stream (first one in the collection)."""

    __tablename__ = "ssg_data_streams"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    product: Mapped[str] = mapped_column(String(64), index=True, default="")
    scap_version: Mapped[str] = mapped_column(String(32), default="")
    timestamp: Mapped[str] = mapped_column(String(64), default="")


class Benchmark(TimestampMixin, Base):
    """The XCCDF benchmark embedded in a data stream."""

    __tablename__ = "ssg_benchmarks"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    data_stream_id: Mapped[str] = mapped_column(String(255), index=True)
    title: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    version: Mapped[str] = mapped_column(String(64), default="")
    status: Mapped[str] = mapped_column(String(64), default="")
    status_date: Mapped[str] = mapped_column(String(64), default="")
    profile_count: Mapped[int] = mapped_column(Integer, default=0)
    group_count: Mapped[int] = mapped_column(Integer, default=0)
    rule_count: Mapped[int] = mapped_column(Integer, default=0)


class DSProfile(TimestampMixin, Base):
    """An XCCDF profile with its select list."""

    __tablename__ = "ssg_ds_profiles"

    benchmark_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    title: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    version: Mapped[str] = mapped_column(String(64), default="")
    rule_count: Mapped[int] = mapped_column(Integer, default=0)

    selected_rules: Mapped[list["DSProfileRule"]] = relationship(
        cascade="all, delete-orphan", lazy="selectin", order_by="DSProfileRule.id"
    )


class DSProfileRule(Base):
    """A select element of a profile; selected mirrors the attribute."""

    __tablename__ = "ssg_ds_profile_rules"
    __table_args__ = (
        ForeignKeyConstraint(
            ["benchmark_id", "profile_id"],
            ["ssg_ds_profiles.benchmark_id", "ssg_ds_profiles.id"],
            ondelete="CASCADE",
        ),
        Index("ix_ssg_ds_profile_rules_profile", "benchmark_id", "profile_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    benchmark_id: Mapped[str] = mapped_column(String(255))
    profile_id: Mapped[str] = mapped_column(String(255))
    rule_id: Mapped[str] = mapped_column(String(255), index=True)
    selected: Mapped[bool] = mapped_column(Boolean, default=False)


class DSGroup(TimestampMixin, Base):
    """An XCCDF group inside a benchmark."""

    __tablename__ = "ssg_ds_groups"

    benchmark_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    parent_id: Mapped[str] = mapped_column(String(255), index=True, default="")
    title: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    level: Mapped[int] = mapped_column(Integer, default=0)
    group_count: Mapped[int] = mapped_column(Integer, default=0)
    rule_count: Mapped[int] = mapped_column(Integer, default=0)


class DSRule(TimestampMixin, Base):
    """An XCCDF rule inside a benchmark, pinned to its immediate group."""

    __tablename__ = "ssg_ds_rules"

    benchmark_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    group_id: Mapped[str] = mapped_column(String(255), index=True, default="")
    title: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    rationale: Mapped[str] = mapped_column(Text, default="")
    severity: Mapped[str] = mapped_column(String(16), index=True, default="unknown")
    selected: Mapped[bool] = mapped_column(Boolean, default=False)
    weight: Mapped[str] = mapped_column(String(16), default="")
    version: Mapped[str] = mapped_column(String(64), default="")

    references: Mapped[list["DSRuleReference"]] = relationship(
        cascade="all, delete-orphan", lazy="selectin", order_by="DSRuleReference.id"
    )
    identifiers: Mapped[list["DSRuleIdentifier"]] = relationship(
        cascade="all, delete-orphan", lazy="selectin", order_by="DSRuleIdentifier.id"
    )


class DSRuleReference(Base):
    """A reference element of a data-stream rule."""

    __tablename__ = "ssg_ds_rule_references"
    __table_args__ = (
        ForeignKeyConstraint(
            ["benchmark_id", "rule_id"], ["ssg_ds_rules.benchmark_id", "ssg_ds_rules.id"], ondelete="CASCADE"
        ),
        Index("ix_ssg_ds_rule_references_rule", "benchmark_id", "rule_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    benchmark_id: Mapped[str] = mapped_column(String(255))
    rule_id: Mapped[str] = mapped_column(String(255))
    href: Mapped[str] = mapped_column(Text, default="")
    ref_id: Mapped[str] = mapped_column(Text, default="")


class DSRuleIdentifier(Base):
    """An ident element of a data-stream rule (CCE, CVE...)."""

    __tablename__ = "ssg_ds_rule_identifiers"
    __table_args__ = (
        ForeignKeyConstraint(
            ["benchmark_id", "rule_id"], ["ssg_ds_rules.benchmark_id", "ssg_ds_rules.id"], ondelete="CASCADE"
        ),
        Index("ix_ssg_ds_rule_identifiers_rule", "benchmark_id", "rule_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    benchmark_id: Mapped[str] = mapped_column(String(255))
    rule_id: Mapped[str] = mapped_column(String(255))
    system: Mapped[str] = mapped_column(String(255), default="")
    identifier: Mapped[str] = mapped_column(String(255), index=True, default="")


# ---------------------------------------------------------------------------
# Cross references
# ---------------------------------------------------------------------------


class CrossReference(Base):
    """A typed edge between two SSG objects; rows are append-only."""

    __tablename__ = "ssg_cross_references"
    __table_args__ = (
        Index("ix_ssg_xref_source", "source_type", "source_id"),
        Index("ix_ssg_xref_target", "target_type", "target_id"),
        UniqueConstraint(
            "source_type", "source_id", "target_type", "target_id", "link_type", name="uq_ssg_xref_edge"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_type: Mapped[str] = mapped_column(String(32))
    source_id: Mapped[str] = mapped_column(String(255))
    target_type: Mapped[str] = mapped_column(String(32))
    target_id: Mapped[str] = mapped_column(String(255))
    link_type: Mapped[str] = mapped_column(String(32), index=True)
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
