"""Request/response envelopes and the in-process RPC bus.

The importer never talks to the fetcher or the store directly; it sends
named requests to a target ("remote" for the fetcher, "local" for storage)
through anything implementing RPCInvoker.
"""

from collections.abc import Awaitable, Callable
from typing import Any, Literal, Protocol

from loguru import logger
from pydantic import BaseModel, Field

from ssgkb.errors import RPCError

REMOTE_TARGET = "remote"
LOCAL_TARGET = "local"


class RPCMessage(BaseModel):
    """Response envelope: either a payload or a human-readable error."""

    type: Literal["response", "error"] = "response"
    payload: dict[str, Any] = Field(default_factory=dict)
    error: str = ""

    @classmethod
    def ok(cls, payload: dict[str, Any] | None = None) -> "RPCMessage":
        return cls(type="response", payload=payload or {})

    @classmethod
    def fail(cls, error: str) -> "RPCMessage":
        return cls(type="error", error=error)

    @property
    def is_error(self) -> bool:
        return self.type == "error"


class RPCInvoker(Protocol):
    """Anything that can deliver a request to a target and return its envelope."""

    async def invoke(self, target: str, method: str, params: dict[str, Any] | None = None) -> RPCMessage: ...


RPCHandler = Callable[[dict[str, Any]], Awaitable[RPCMessage]]


class LocalRPCBus:
    """In-process RPC registry keyed by (target, method)."""

    def __init__(self) -> None:
        self._handlers: dict[tuple[str, str], RPCHandler] = {}

    def register(self, target: str, method: str, handler: RPCHandler) -> None:
        self._handlers[(target, method)] = handler

    def methods(self, target: str) -> list[str]:
        return sorted(method for t, method in self._handlers if t == target)

    async def invoke(self, target: str, method: str, params: dict[str, Any] | None = None) -> RPCMessage:
        """Deliver a request.

        Raises:
            RPCError: If no handler is registered for (target, method).
        """
        handler = self._handlers.get((target, method))
        if handler is None:
            raise RPCError(f"unknown method {target}.{method}", details={"target": target, "method": method})
        logger.debug("RPC {}.{}", target, method)
        return await handler(params or {})
