"""Typed persistence for SSG entities and cross-reference edges.

Every save is an upsert; owned collections (rule references, profile
selections, rule identifiers, table entries, profile rules) are replaced
wholesale inside the same transaction as their owner. Cross-reference
inserts ignore rows that already exist, so re-ingesting the same content
never duplicates edges.
"""

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from loguru import logger
from sqlalchemy import Select, and_, delete, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import make_transient

from ssgkb.db.models import (
    Benchmark,
    CrossReference,
    DataStream,
    DSGroup,
    DSProfile,
    DSProfileRule,
    DSRule,
    DSRuleIdentifier,
    DSRuleReference,
    Group,
    Guide,
    Manifest,
    Profile,
    ProfileRule,
    Reference,
    Rule,
    Table,
    TableEntry,
)
from ssgkb.db.tree import GuideTree, TreeNode, build_forest
from ssgkb.errors import IOReadError, IOWriteError, NotFoundError
from ssgkb.types import IDENTIFIER_TYPES

DEFAULT_PAGE_SIZE = 100

# Rows per INSERT statement for edge batches (SQLite caps bound parameters).
EDGE_CHUNK_SIZE = 500


def normalize_page(offset: int, limit: int) -> tuple[int, int]:
    """Clamp a negative offset to 0 and replace a non-positive limit by 100."""
    if offset < 0:
        offset = 0
    if limit <= 0:
        limit = DEFAULT_PAGE_SIZE
    return offset, limit


class SSGStore:
    """Async store over a SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        if session_factory is None:
            from ssgkb.db.session import async_session

            session_factory = async_session
        self._sessions = session_factory

    # ------------------------------------------------------------------
    # Session helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions() as session, session.begin():
                yield session
        except SQLAlchemyError as e:
            logger.error("Store write failed: {}", e)
            raise IOWriteError("database write failed", details={"error": str(e)}) from e

    @asynccontextmanager
    async def _reading(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("Store read failed: {}", e)
            raise IOReadError("database read failed", details={"error": str(e)}) from e

    async def _get(self, model: type, key: Any, label: str) -> Any:
        async with self._reading() as session:
            obj = await session.get(model, key)
        if obj is None:
            raise NotFoundError(f"{label} not found", details={"id": key})
        return obj

    async def _page(self, stmt: Select, order_by: Sequence, offset: int, limit: int) -> tuple[list, int]:
        offset, limit = normalize_page(offset, limit)
        async with self._reading() as session:
            total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
            result = await session.scalars(stmt.order_by(*order_by).offset(offset).limit(limit))
            return list(result.all()), total or 0

    async def _all(self, stmt: Select) -> list:
        async with self._reading() as session:
            result = await session.scalars(stmt)
            return list(result.all())

    @staticmethod
    async def _merge_rule(session: AsyncSession, rule: Rule) -> None:
        for ref in rule.references:
            ref.guide_id = rule.guide_id
            ref.rule_id = rule.id
        await session.execute(
            delete(Reference)
            .where(Reference.guide_id == rule.guide_id, Reference.rule_id == rule.id)
            .execution_options(synchronize_session=False)
        )
        await session.merge(rule)

    @staticmethod
    async def _merge_ds_profile(session: AsyncSession, profile: DSProfile) -> None:
        for sel in profile.selected_rules:
            sel.benchmark_id = profile.benchmark_id
            sel.profile_id = profile.id
        await session.execute(
            delete(DSProfileRule)
            .where(
                DSProfileRule.benchmark_id == profile.benchmark_id,
                DSProfileRule.profile_id == profile.id,
            )
            .execution_options(synchronize_session=False)
        )
        await session.merge(profile)

    @staticmethod
    async def _merge_ds_rule(session: AsyncSession, rule: DSRule) -> None:
        for owned in (*rule.references, *rule.identifiers):
            owned.benchmark_id = rule.benchmark_id
            owned.rule_id = rule.id
        for model in (DSRuleReference, DSRuleIdentifier):
            await session.execute(
                delete(model)
                .where(model.benchmark_id == rule.benchmark_id, model.rule_id == rule.id)
                .execution_options(synchronize_session=False)
            )
        await session.merge(rule)

    # ------------------------------------------------------------------
    # Guides, groups and rules
    # ------------------------------------------------------------------

    async def save_guide(self, guide: Guide) -> None:
        async with self._transaction() as session:
            await session.merge(guide)

    async def save_group(self, group: Group) -> None:
        async with self._transaction() as session:
            await session.merge(group)

    async def save_rule(self, rule: Rule) -> None:
        """Upsert a rule and replace its references in one transaction."""
        async with self._transaction() as session:
            await self._merge_rule(session, rule)

    async def save_guide_tree(self, guide: Guide, groups: list[Group], rules: list[Rule]) -> None:
        """Persist a parsed guide, replacing its previous group/rule tree.

        Args:
            guide: The guide row.
            groups: Every group of the guide.
            rules: Every rule of the guide, references attached.
        """
        async with self._transaction() as session:
            await session.merge(guide)
            for model in (Reference, Rule, Group):
                await session.execute(
                    delete(model)
                    .where(model.guide_id == guide.id)
                    .execution_options(synchronize_session=False)
                )
            for group in groups:
                group.guide_id = guide.id
                await session.merge(group)
            for rule in rules:
                rule.guide_id = guide.id
                await self._merge_rule(session, rule)
        logger.debug("Saved guide {} ({} groups, {} rules)", guide.id, len(groups), len(rules))

    async def get_guide(self, guide_id: str) -> Guide:
        return await self._get(Guide, guide_id, "guide")

    async def list_guides(
        self, product: str = "", profile_id: str = "", offset: int = 0, limit: int = DEFAULT_PAGE_SIZE
    ) -> tuple[list[Guide], int]:
        stmt = select(Guide)
        if product:
            stmt = stmt.where(Guide.product == product)
        if profile_id:
            stmt = stmt.where(Guide.profile_id == profile_id)
        return await self._page(stmt, (Guide.title, Guide.id), offset, limit)

    async def delete_guide(self, guide_id: str) -> None:
        """Delete a guide with its references, rules and groups atomically.

        Raises:
            NotFoundError: If the guide does not exist.
        """
        async with self._transaction() as session:
            guide = await session.get(Guide, guide_id)
            if guide is None:
                raise NotFoundError("guide not found", details={"id": guide_id})
            for model in (Reference, Rule, Group):
                await session.execute(
                    delete(model)
                    .where(model.guide_id == guide_id)
                    .execution_options(synchronize_session=False)
                )
            await session.delete(guide)
        logger.info("Deleted guide {}", guide_id)

    async def get_group(self, guide_id: str, group_id: str) -> Group:
        return await self._get(Group, (guide_id, group_id), "group")

    async def get_root_groups(self, guide_id: str) -> list[Group]:
        return await self._all(
            select(Group)
            .where(Group.guide_id == guide_id, Group.parent_id == "")
            .order_by(Group.title, Group.id)
        )

    async def get_child_groups(self, guide_id: str, parent_id: str) -> list[Group]:
        return await self._all(
            select(Group)
            .where(Group.guide_id == guide_id, Group.parent_id == parent_id)
            .order_by(Group.title, Group.id)
        )

    async def get_child_rules(self, guide_id: str, group_id: str) -> list[Rule]:
        return await self._all(
            select(Rule)
            .where(Rule.guide_id == guide_id, Rule.group_id == group_id)
            .order_by(Rule.title, Rule.id)
        )

    async def get_rule(self, guide_id: str, rule_id: str) -> Rule:
        return await self._get(Rule, (guide_id, rule_id), "rule")

    async def list_rules(
        self,
        guide_id: str = "",
        group_id: str = "",
        severity: str = "",
        profile: str = "",
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[Rule], int]:
        """List guide rules with optional filters.

        Args:
            guide_id: Restrict to one guide.
            group_id: Restrict to one group.
            severity: Restrict to one severity.
            profile: Manifest profile id ("{product}:{short}"); keeps rules whose
                short id the profile lists.
            offset: Page offset.
            limit: Page size.

        Returns:
            Tuple of (page, total matching rows).
        """
        stmt = select(Rule)
        if guide_id:
            stmt = stmt.where(Rule.guide_id == guide_id)
        if group_id:
            stmt = stmt.where(Rule.group_id == group_id)
        if severity:
            stmt = stmt.where(Rule.severity == severity)
        if profile:
            listed = select(ProfileRule.rule_short_id).where(ProfileRule.profile_id == profile)
            stmt = stmt.where(Rule.short_id.in_(listed))
        return await self._page(stmt, (Rule.title, Rule.guide_id, Rule.id), offset, limit)

    async def get_tree(self, guide_id: str) -> GuideTree:
        """Load a guide with all of its groups and rules (references preloaded)."""
        guide = await self.get_guide(guide_id)
        groups = await self._all(select(Group).where(Group.guide_id == guide_id))
        rules = await self._all(select(Rule).where(Rule.guide_id == guide_id))
        return GuideTree(guide=guide, groups=groups, rules=rules)

    async def build_tree_nodes(self, guide_id: str) -> list[TreeNode]:
        tree = await self.get_tree(guide_id)
        return build_forest(tree.groups, tree.rules)

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    async def save_table(self, table: Table, entries: list[TableEntry] | None = None) -> None:
        """Upsert a table; when entries are given they replace the old ones in order."""
        async with self._transaction() as session:
            await session.merge(table)
            if entries is None:
                return
            await session.execute(
                delete(TableEntry)
                .where(TableEntry.table_id == table.id)
                .execution_options(synchronize_session=False)
            )
            for entry in entries:
                make_transient(entry)
                entry.table_id = table.id
                entry.id = None
            # Inserts are issued in add order, so ids follow source row order.
            session.add_all(entries)

    async def get_table(self, table_id: str) -> Table:
        return await self._get(Table, table_id, "table")

    async def list_tables(
        self, product: str = "", table_type: str = "", offset: int = 0, limit: int = DEFAULT_PAGE_SIZE
    ) -> tuple[list[Table], int]:
        stmt = select(Table)
        if product:
            stmt = stmt.where(Table.product == product)
        if table_type:
            stmt = stmt.where(Table.table_type == table_type)
        return await self._page(stmt, (Table.title, Table.id), offset, limit)

    async def list_table_entries(
        self, table_id: str, offset: int = 0, limit: int = DEFAULT_PAGE_SIZE
    ) -> tuple[list[TableEntry], int]:
        stmt = select(TableEntry).where(TableEntry.table_id == table_id)
        return await self._page(stmt, (TableEntry.id,), offset, limit)

    # ------------------------------------------------------------------
    # Manifests and profiles
    # ------------------------------------------------------------------

    async def save_manifest(
        self,
        manifest: Manifest,
        profiles: list[Profile] | None = None,
        profile_rules: list[ProfileRule] | None = None,
    ) -> None:
        """Upsert a manifest and replace its profiles and profile rules.

        Args:
            manifest: The manifest row.
            profiles: Profiles of the manifest.
            profile_rules: Rule listings of those profiles.
        """
        profiles = profiles or []
        profile_rules = profile_rules or []
        async with self._transaction() as session:
            await session.merge(manifest)
            old_ids = select(Profile.id).where(Profile.manifest_id == manifest.id)
            new_ids = [p.id for p in profiles]
            await session.execute(
                delete(ProfileRule)
                .where(or_(ProfileRule.profile_id.in_(old_ids), ProfileRule.profile_id.in_(new_ids)))
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                delete(Profile)
                .where(Profile.manifest_id == manifest.id)
                .execution_options(synchronize_session=False)
            )
            for profile in profiles:
                profile.manifest_id = manifest.id
                await session.merge(profile)
            for profile_rule in profile_rules:
                make_transient(profile_rule)
                profile_rule.id = None
            session.add_all(profile_rules)
        logger.debug(
            "Saved manifest {} ({} profiles, {} profile rules)",
            manifest.id,
            len(profiles),
            len(profile_rules),
        )

    async def save_profile(self, profile: Profile) -> None:
        async with self._transaction() as session:
            await session.merge(profile)

    async def get_manifest(self, manifest_id: str) -> Manifest:
        return await self._get(Manifest, manifest_id, "manifest")

    async def list_manifests(
        self, product: str = "", offset: int = 0, limit: int = DEFAULT_PAGE_SIZE
    ) -> tuple[list[Manifest], int]:
        stmt = select(Manifest)
        if product:
            stmt = stmt.where(Manifest.product == product)
        return await self._page(stmt, (Manifest.product, Manifest.id), offset, limit)

    async def get_profile(self, profile_id: str) -> Profile:
        return await self._get(Profile, profile_id, "profile")

    async def list_profiles(
        self, product: str = "", manifest_id: str = "", offset: int = 0, limit: int = DEFAULT_PAGE_SIZE
    ) -> tuple[list[Profile], int]:
        stmt = select(Profile)
        if product:
            stmt = stmt.where(Profile.product == product)
        if manifest_id:
            stmt = stmt.where(Profile.manifest_id == manifest_id)
        return await self._page(stmt, (Profile.profile_id, Profile.id), offset, limit)

    async def get_profile_rules(self, profile_id: str) -> list[ProfileRule]:
        return await self._all(
            select(ProfileRule).where(ProfileRule.profile_id == profile_id).order_by(ProfileRule.id)
        )

    # ------------------------------------------------------------------
    # Data streams
    # ------------------------------------------------------------------

    async def save_data_stream(
        self,
        data_stream: DataStream,
        benchmark: Benchmark,
        profiles: list[DSProfile],
        groups: list[DSGroup],
        rules: list[DSRule],
    ) -> None:
        """Persist a parsed data stream, replacing the benchmark's contents.

        Args:
            data_stream: The data-stream row.
            benchmark: Its benchmark.
            profiles: Benchmark profiles with their selections.
            groups: Benchmark groups in pre-order.
            rules: Benchmark rules with references and identifiers.
        """
        async with self._transaction() as session:
            await session.merge(data_stream)
            benchmark.data_stream_id = data_stream.id
            await session.merge(benchmark)
            for model in (DSProfileRule, DSProfile, DSRuleReference, DSRuleIdentifier, DSRule, DSGroup):
                await session.execute(
                    delete(model)
                    .where(model.benchmark_id == benchmark.id)
                    .execution_options(synchronize_session=False)
                )
            for profile in profiles:
                profile.benchmark_id = benchmark.id
                await self._merge_ds_profile(session, profile)
            for group in groups:
                group.benchmark_id = benchmark.id
                await session.merge(group)
            for rule in rules:
                rule.benchmark_id = benchmark.id
                await self._merge_ds_rule(session, rule)
        logger.debug(
            "Saved data stream {} (benchmark {}: {} profiles, {} groups, {} rules)",
            data_stream.id,
            benchmark.id,
            len(profiles),
            len(groups),
            len(rules),
        )

    async def save_benchmark(self, benchmark: Benchmark) -> None:
        async with self._transaction() as session:
            await session.merge(benchmark)

    async def save_ds_profile(self, profile: DSProfile) -> None:
        """Upsert a profile and replace its select list in one transaction."""
        async with self._transaction() as session:
            await self._merge_ds_profile(session, profile)

    async def save_ds_group(self, group: DSGroup) -> None:
        async with self._transaction() as session:
            await session.merge(group)

    async def save_ds_rule(self, rule: DSRule) -> None:
        """Upsert a rule and replace its references and identifiers in one transaction."""
        async with self._transaction() as session:
            await self._merge_ds_rule(session, rule)

    async def get_data_stream(self, data_stream_id: str) -> DataStream:
        return await self._get(DataStream, data_stream_id, "data stream")

    async def list_data_streams(
        self, product: str = "", offset: int = 0, limit: int = DEFAULT_PAGE_SIZE
    ) -> tuple[list[DataStream], int]:
        stmt = select(DataStream)
        if product:
            stmt = stmt.where(DataStream.product == product)
        return await self._page(stmt, (DataStream.product, DataStream.id), offset, limit)

    async def get_benchmark(self, benchmark_id: str) -> Benchmark:
        return await self._get(Benchmark, benchmark_id, "benchmark")

    async def list_benchmarks(self, data_stream_id: str) -> list[Benchmark]:
        return await self._all(
            select(Benchmark).where(Benchmark.data_stream_id == data_stream_id).order_by(Benchmark.id)
        )

    async def get_ds_profile(self, benchmark_id: str, profile_id: str) -> DSProfile:
        return await self._get(DSProfile, (benchmark_id, profile_id), "profile")

    async def list_ds_profiles(
        self, benchmark_id: str, offset: int = 0, limit: int = DEFAULT_PAGE_SIZE
    ) -> tuple[list[DSProfile], int]:
        stmt = select(DSProfile).where(DSProfile.benchmark_id == benchmark_id)
        return await self._page(stmt, (DSProfile.title, DSProfile.id), offset, limit)

    async def get_ds_group(self, benchmark_id: str, group_id: str) -> DSGroup:
        return await self._get(DSGroup, (benchmark_id, group_id), "group")

    async def list_ds_groups(
        self,
        benchmark_id: str,
        parent_id: str | None = None,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[DSGroup], int]:
        stmt = select(DSGroup).where(DSGroup.benchmark_id == benchmark_id)
        if parent_id is not None:
            stmt = stmt.where(DSGroup.parent_id == parent_id)
        return await self._page(stmt, (DSGroup.title, DSGroup.id), offset, limit)

    async def get_ds_rule(self, benchmark_id: str, rule_id: str) -> DSRule:
        return await self._get(DSRule, (benchmark_id, rule_id), "rule")

    async def list_ds_rules(
        self,
        benchmark_id: str,
        group_id: str = "",
        severity: str = "",
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[DSRule], int]:
        stmt = select(DSRule).where(DSRule.benchmark_id == benchmark_id)
        if group_id:
            stmt = stmt.where(DSRule.group_id == group_id)
        if severity:
            stmt = stmt.where(DSRule.severity == severity)
        return await self._page(stmt, (DSRule.title, DSRule.id), offset, limit)

    # ------------------------------------------------------------------
    # Cross references
    # ------------------------------------------------------------------

    async def save_cross_references(self, edges: list[CrossReference]) -> None:
        """Insert edges in one transaction, skipping rows that already exist.

        An empty list is a no-op.
        """
        if not edges:
            return
        rows = [
            {
                "source_type": e.source_type,
                "source_id": e.source_id,
                "target_type": e.target_type,
                "target_id": e.target_id,
                "link_type": e.link_type,
                "metadata_json": e.metadata_json or "{}",
            }
            for e in edges
        ]
        async with self._transaction() as session:
            insert = pg_insert if session.bind.dialect.name == "postgresql" else sqlite_insert
            for start in range(0, len(rows), EDGE_CHUNK_SIZE):
                stmt = insert(CrossReference).values(rows[start : start + EDGE_CHUNK_SIZE])
                await session.execute(stmt.on_conflict_do_nothing())
        logger.debug("Saved {} cross reference(s)", len(rows))

    async def _edges(self, stmt: Select, limit: int, offset: int) -> list[CrossReference]:
        stmt = stmt.order_by(CrossReference.id)
        if limit > 0:
            stmt = stmt.offset(max(offset, 0)).limit(limit)
        return await self._all(stmt)

    async def get_cross_references(
        self, source_type: str, source_id: str, limit: int = 0, offset: int = 0
    ) -> list[CrossReference]:
        """Edges leaving an object; limit 0 returns every edge."""
        stmt = select(CrossReference).where(
            CrossReference.source_type == source_type, CrossReference.source_id == source_id
        )
        return await self._edges(stmt, limit, offset)

    async def get_cross_references_by_target(
        self, target_type: str, target_id: str, limit: int = 0, offset: int = 0
    ) -> list[CrossReference]:
        """Edges arriving at an object; limit 0 returns every edge."""
        stmt = select(CrossReference).where(
            CrossReference.target_type == target_type, CrossReference.target_id == target_id
        )
        return await self._edges(stmt, limit, offset)

    async def find_related_objects(
        self, object_type: str, object_id: str, link_type: str = "", limit: int = 0, offset: int = 0
    ) -> list[CrossReference]:
        """Edges where the object is the source or the target."""
        stmt = select(CrossReference).where(
            or_(
                and_(CrossReference.source_type == object_type, CrossReference.source_id == object_id),
                and_(CrossReference.target_type == object_type, CrossReference.target_id == object_id),
            )
        )
        if link_type:
            stmt = stmt.where(CrossReference.link_type == link_type)
        return await self._edges(stmt, limit, offset)

    async def list_identifier_edges(self) -> list[CrossReference]:
        """Edges pointing at identifier nodes (rules, CCEs, products, profiles)."""
        stmt = select(CrossReference).where(
            CrossReference.target_type.in_(sorted(IDENTIFIER_TYPES))
        )
        return await self._edges(stmt, 0, 0)
