"""RPC handler shims for the fetcher and the storage worker.

Each shim validates its request payload, delegates to the fetcher, a parser
or the store, and returns an RPCMessage. Shims never raise: errors come
back as error envelopes and all retry/counting policy lives in the importer.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from ssgkb.db.store import DEFAULT_PAGE_SIZE, SSGStore
from ssgkb.errors import NotFoundError, SSGError
from ssgkb.ingestion import (
    extract_data_stream_edges,
    extract_guide_edges,
    extract_manifest_edges,
    extract_table_edges,
    materialize_closure,
    parse_data_stream,
    parse_guide,
    parse_manifest,
    parse_table,
)
from ssgkb.worker.fetcher import SourceFetcher
from ssgkb.worker.rpc import LOCAL_TARGET, REMOTE_TARGET, LocalRPCBus, RPCMessage

# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class PathRequest(BaseModel):
    path: str = Field(..., min_length=1)


class FilenameRequest(BaseModel):
    filename: str = Field(..., min_length=1)


class GuideRequest(BaseModel):
    guide_id: str = Field(..., min_length=1)


class RuleRequest(BaseModel):
    guide_id: str = Field(..., min_length=1)
    rule_id: str = Field(..., min_length=1)


class PageRequest(BaseModel):
    offset: int = 0
    limit: int = DEFAULT_PAGE_SIZE


class ListGuidesRequest(PageRequest):
    product: str = ""
    profile_id: str = ""


class ListRulesRequest(PageRequest):
    guide_id: str = ""
    group_id: str = ""
    severity: str = ""
    profile: str = ""


class ListTablesRequest(PageRequest):
    product: str = ""
    table_type: str = ""


class TableRequest(PageRequest):
    table_id: str = Field(..., min_length=1)


class ProductPageRequest(PageRequest):
    product: str = ""


class ListProfilesRequest(PageRequest):
    product: str = ""
    manifest_id: str = ""


class ProfileRequest(BaseModel):
    profile_id: str = Field(..., min_length=1)


class DataStreamRequest(BaseModel):
    data_stream_id: str = Field(..., min_length=1)


class ListDSRulesRequest(PageRequest):
    benchmark_id: str = Field(..., min_length=1)
    group_id: str = ""
    severity: str = ""


class DSRuleRequest(BaseModel):
    benchmark_id: str = Field(..., min_length=1)
    rule_id: str = Field(..., min_length=1)


class CrossReferencesRequest(BaseModel):
    source_type: str = Field(..., min_length=1)
    source_id: str = Field(..., min_length=1)
    limit: int = 0
    offset: int = 0


class RelatedObjectsRequest(BaseModel):
    object_type: str = Field(..., min_length=1)
    object_id: str = Field(..., min_length=1)
    link_type: str = ""
    limit: int = 0
    offset: int = 0


def describe_validation_error(exc: ValidationError) -> str:
    """Turn the first pydantic error into a short message."""
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or "payload"
    if first["type"] in ("missing", "string_too_short"):
        return f"{field} is required"
    return f"{field}: {first['msg']}"


Shim = Callable[[Any, dict[str, Any]], Awaitable[dict[str, Any]]]


def rpc_handler(fn: Shim) -> Callable[[Any, dict[str, Any]], Awaitable[RPCMessage]]:
    """Wrap a shim so its result or failure is packed into an RPCMessage."""

    @functools.wraps(fn)
    async def wrapper(self: Any, params: dict[str, Any]) -> RPCMessage:
        try:
            return RPCMessage.ok(await fn(self, params))
        except ValidationError as e:
            return RPCMessage.fail(describe_validation_error(e))
        except NotFoundError as e:
            return RPCMessage.fail(e.message)
        except SSGError as e:
            logger.warning("{} failed: {}", fn.__name__, e.message)
            return RPCMessage.fail(e.message)
        except Exception as e:
            logger.exception("{} raised unexpectedly", fn.__name__)
            return RPCMessage.fail(f"internal error: {e}")

    return wrapper


def _page(rows: list, total: int, key: str, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
    return {key: [row.to_dict(exclude=exclude) for row in rows], "total": total}


# ---------------------------------------------------------------------------
# Fetcher shims (target "remote")
# ---------------------------------------------------------------------------


class FetcherHandlers:
    """Expose a SourceFetcher over RPC."""

    def __init__(self, fetcher: SourceFetcher) -> None:
        self.fetcher = fetcher

    def register(self, bus: LocalRPCBus) -> None:
        bus.register(REMOTE_TARGET, "FetcherPull", self.pull)
        bus.register(REMOTE_TARGET, "FetcherListGuides", self.list_guides)
        bus.register(REMOTE_TARGET, "FetcherListTables", self.list_tables)
        bus.register(REMOTE_TARGET, "FetcherListManifests", self.list_manifests)
        bus.register(REMOTE_TARGET, "FetcherListDataStreams", self.list_data_streams)
        bus.register(REMOTE_TARGET, "FetcherGetFilePath", self.get_file_path)

    @rpc_handler
    async def pull(self, params: dict[str, Any]) -> dict[str, Any]:
        await self.fetcher.pull()
        return {"root": str(self.fetcher.root)}

    @staticmethod
    def _files(files: list[str]) -> dict[str, Any]:
        return {"files": files, "count": len(files)}

    @rpc_handler
    async def list_guides(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._files(self.fetcher.list_guides())

    @rpc_handler
    async def list_tables(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._files(self.fetcher.list_tables())

    @rpc_handler
    async def list_manifests(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._files(self.fetcher.list_manifests())

    @rpc_handler
    async def list_data_streams(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._files(self.fetcher.list_data_streams())

    @rpc_handler
    async def get_file_path(self, params: dict[str, Any]) -> dict[str, Any]:
        req = FilenameRequest.model_validate(params)
        return {"path": self.fetcher.get_file_path(req.filename)}


# ---------------------------------------------------------------------------
# Storage shims (target "local")
# ---------------------------------------------------------------------------


class StorageHandlers:
    """Expose parsing + persistence and store queries over RPC."""

    def __init__(self, store: SSGStore) -> None:
        self.store = store

    def register(self, bus: LocalRPCBus) -> None:
        routes = {
            "ImportGuide": self.import_guide,
            "ImportTable": self.import_table,
            "ImportManifest": self.import_manifest,
            "ImportDataStream": self.import_data_stream,
            "MaterializeCrossReferences": self.materialize_cross_references,
            "GetCrossReferences": self.get_cross_references,
            "FindRelatedObjects": self.find_related_objects,
            "DeleteGuide": self.delete_guide,
            "GetGuide": self.get_guide,
            "ListGuides": self.list_guides,
            "GetTreeNodes": self.get_tree_nodes,
            "ListRules": self.list_rules,
            "GetRule": self.get_rule,
            "ListTables": self.list_tables,
            "ListTableEntries": self.list_table_entries,
            "ListManifests": self.list_manifests,
            "ListProfiles": self.list_profiles,
            "GetProfileRules": self.get_profile_rules,
            "ListDataStreams": self.list_data_streams,
            "GetDataStream": self.get_data_stream,
            "ListDSRules": self.list_ds_rules,
            "GetDSRule": self.get_ds_rule,
        }
        for method, handler in routes.items():
            bus.register(LOCAL_TARGET, method, handler)

    # -- imports --------------------------------------------------------

    @rpc_handler
    async def import_guide(self, params: dict[str, Any]) -> dict[str, Any]:
        req = PathRequest.model_validate(params)
        parsed = await asyncio.to_thread(parse_guide, req.path)
        await self.store.save_guide_tree(parsed.guide, parsed.groups, parsed.rules)
        edges = extract_guide_edges(parsed.guide)
        await self.store.save_cross_references(edges)
        logger.info(
            "Imported guide {} ({} groups, {} rules, {} edges)",
            parsed.guide.id,
            len(parsed.groups),
            len(parsed.rules),
            len(edges),
        )
        return {"id": parsed.guide.id, "groups": len(parsed.groups), "rules": len(parsed.rules), "edges": len(edges)}

    @rpc_handler
    async def import_table(self, params: dict[str, Any]) -> dict[str, Any]:
        req = PathRequest.model_validate(params)
        parsed = await asyncio.to_thread(parse_table, req.path)
        await self.store.save_table(parsed.table, parsed.entries)
        edges = extract_table_edges(parsed.table, parsed.entries)
        await self.store.save_cross_references(edges)
        logger.info("Imported table {} ({} entries, {} edges)", parsed.table.id, len(parsed.entries), len(edges))
        return {"id": parsed.table.id, "entries": len(parsed.entries), "edges": len(edges)}

    @rpc_handler
    async def import_manifest(self, params: dict[str, Any]) -> dict[str, Any]:
        req = PathRequest.model_validate(params)
        parsed = await asyncio.to_thread(parse_manifest, req.path)
        await self.store.save_manifest(parsed.manifest, parsed.profiles, parsed.profile_rules)
        edges = extract_manifest_edges(parsed.manifest, parsed.profiles)
        await self.store.save_cross_references(edges)
        logger.info(
            "Imported manifest {} ({} profiles, {} edges)", parsed.manifest.id, len(parsed.profiles), len(edges)
        )
        return {
            "id": parsed.manifest.id,
            "profiles": len(parsed.profiles),
            "profile_rules": len(parsed.profile_rules),
            "edges": len(edges),
        }

    @rpc_handler
    async def import_data_stream(self, params: dict[str, Any]) -> dict[str, Any]:
        req = PathRequest.model_validate(params)
        parsed = await asyncio.to_thread(parse_data_stream, req.path)
        await self.store.save_data_stream(
            parsed.data_stream, parsed.benchmark, parsed.profiles, parsed.groups, parsed.rules
        )
        edges = extract_data_stream_edges(parsed.data_stream, parsed.profiles, parsed.rules)
        await self.store.save_cross_references(edges)
        logger.info(
            "Imported data stream {} ({} profiles, {} groups, {} rules, {} edges)",
            parsed.data_stream.id,
            len(parsed.profiles),
            len(parsed.groups),
            len(parsed.rules),
            len(edges),
        )
        return {
            "id": parsed.data_stream.id,
            "benchmark_id": parsed.benchmark.id,
            "profiles": len(parsed.profiles),
            "groups": len(parsed.groups),
            "rules": len(parsed.rules),
            "edges": len(edges),
        }

    # -- cross references ------------------------------------------------

    @rpc_handler
    async def materialize_cross_references(self, params: dict[str, Any]) -> dict[str, Any]:
        edges = await self.store.list_identifier_edges()
        closure = materialize_closure(edges)
        await self.store.save_cross_references(closure)
        logger.info("Materialized {} cross reference(s) from {} identifier edge(s)", len(closure), len(edges))
        return {"input_edges": len(edges), "edges": len(closure)}

    @rpc_handler
    async def get_cross_references(self, params: dict[str, Any]) -> dict[str, Any]:
        req = CrossReferencesRequest.model_validate(params)
        edges = await self.store.get_cross_references(req.source_type, req.source_id, req.limit, req.offset)
        return {"edges": [e.to_dict() for e in edges], "count": len(edges)}

    @rpc_handler
    async def find_related_objects(self, params: dict[str, Any]) -> dict[str, Any]:
        req = RelatedObjectsRequest.model_validate(params)
        edges = await self.store.find_related_objects(
            req.object_type, req.object_id, req.link_type, req.limit, req.offset
        )
        return {"edges": [e.to_dict() for e in edges], "count": len(edges)}

    # -- guides ----------------------------------------------------------

    @rpc_handler
    async def delete_guide(self, params: dict[str, Any]) -> dict[str, Any]:
        req = GuideRequest.model_validate(params)
        await self.store.delete_guide(req.guide_id)
        return {"id": req.guide_id}

    @rpc_handler
    async def get_guide(self, params: dict[str, Any]) -> dict[str, Any]:
        req = GuideRequest.model_validate(params)
        guide = await self.store.get_guide(req.guide_id)
        return guide.to_dict(exclude=("html_content",))

    @rpc_handler
    async def list_guides(self, params: dict[str, Any]) -> dict[str, Any]:
        req = ListGuidesRequest.model_validate(params)
        rows, total = await self.store.list_guides(req.product, req.profile_id, req.offset, req.limit)
        return _page(rows, total, "guides", exclude=("html_content",))

    @rpc_handler
    async def get_tree_nodes(self, params: dict[str, Any]) -> dict[str, Any]:
        req = GuideRequest.model_validate(params)
        nodes = await self.store.build_tree_nodes(req.guide_id)
        return {"guide_id": req.guide_id, "nodes": [n.to_dict() for n in nodes]}

    @rpc_handler
    async def list_rules(self, params: dict[str, Any]) -> dict[str, Any]:
        req = ListRulesRequest.model_validate(params)
        rows, total = await self.store.list_rules(
            req.guide_id, req.group_id, req.severity, req.profile, req.offset, req.limit
        )
        return _page(rows, total, "rules")

    @rpc_handler
    async def get_rule(self, params: dict[str, Any]) -> dict[str, Any]:
        req = RuleRequest.model_validate(params)
        return (await self.store.get_rule(req.guide_id, req.rule_id)).to_dict()

    # -- tables and manifests ----------------------------------------------

    @rpc_handler
    async def list_tables(self, params: dict[str, Any]) -> dict[str, Any]:
        req = ListTablesRequest.model_validate(params)
        rows, total = await self.store.list_tables(req.product, req.table_type, req.offset, req.limit)
        return _page(rows, total, "tables")

    @rpc_handler
    async def list_table_entries(self, params: dict[str, Any]) -> dict[str, Any]:
        req = TableRequest.model_validate(params)
        rows, total = await self.store.list_table_entries(req.table_id, req.offset, req.limit)
        return _page(rows, total, "entries")

    @rpc_handler
    async def list_manifests(self, params: dict[str, Any]) -> dict[str, Any]:
        req = ProductPageRequest.model_validate(params)
        rows, total = await self.store.list_manifests(req.product, req.offset, req.limit)
        return _page(rows, total, "manifests")

    @rpc_handler
    async def list_profiles(self, params: dict[str, Any]) -> dict[str, Any]:
        req = ListProfilesRequest.model_validate(params)
        rows, total = await self.store.list_profiles(req.product, req.manifest_id, req.offset, req.limit)
        return _page(rows, total, "profiles")

    @rpc_handler
    async def get_profile_rules(self, params: dict[str, Any]) -> dict[str, Any]:
        req = ProfileRequest.model_validate(params)
        rows = await self.store.get_profile_rules(req.profile_id)
        return {"rules": [r.to_dict() for r in rows], "count": len(rows)}

    # -- data streams ------------------------------------------------------

    @rpc_handler
    async def list_data_streams(self, params: dict[str, Any]) -> dict[str, Any]:
        req = ProductPageRequest.model_validate(params)
        rows, total = await self.store.list_data_streams(req.product, req.offset, req.limit)
        return _page(rows, total, "data_streams")

    @rpc_handler
    async def get_data_stream(self, params: dict[str, Any]) -> dict[str, Any]:
        req = DataStreamRequest.model_validate(params)
        data_stream = await self.store.get_data_stream(req.data_stream_id)
        benchmarks = await self.store.list_benchmarks(data_stream.id)
        return {**data_stream.to_dict(), "benchmarks": [b.to_dict() for b in benchmarks]}

    @rpc_handler
    async def list_ds_rules(self, params: dict[str, Any]) -> dict[str, Any]:
        req = ListDSRulesRequest.model_validate(params)
        rows, total = await self.store.list_ds_rules(
            req.benchmark_id, req.group_id, req.severity, req.offset, req.limit
        )
        return _page(rows, total, "rules")

    @rpc_handler
    async def get_ds_rule(self, params: dict[str, Any]) -> dict[str, Any]:
        req = DSRuleRequest.model_validate(params)
        return (await self.store.get_ds_rule(req.benchmark_id, req.rule_id)).to_dict()


def build_bus(store: SSGStore, fetcher: SourceFetcher) -> LocalRPCBus:
    """Create a bus with the fetcher and storage shims registered."""
    bus = LocalRPCBus()
    FetcherHandlers(fetcher).register(bus)
    StorageHandlers(store).register(bus)
    return bus
