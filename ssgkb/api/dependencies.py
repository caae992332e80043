"""Shared FastAPI dependencies.

The store, the RPC bus and the importer are created once in the application
lifespan and hung off ``app.state``; tests override these dependencies with
instances bound to an in-memory database.
"""

from fastapi import Request

from ssgkb.db.store import SSGStore
from ssgkb.worker.importer import SSGImporter
from ssgkb.worker.rpc import LocalRPCBus


def get_store(request: Request) -> SSGStore:
    return request.app.state.store


def get_bus(request: Request) -> LocalRPCBus:
    return request.app.state.bus


def get_importer(request: Request) -> SSGImporter:
    return request.app.state.importer


__all__ = ["get_bus", "get_importer", "get_store"]
