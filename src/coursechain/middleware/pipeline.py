# src/coursechain/middleware/pipeline.py
"""Handler pipeline: immutable request context in, structured result out.

Stages are plain higher-order functions ``Stage(handler) -> handler``. They
see the handler's :class:`HandlerResult` directly and return a new one; no
stage mutates a shared request or response object.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTasks


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, as resolved from a bearer token."""

    id: str
    address: str
    role: str = "student"


@dataclass(frozen=True)
class RequestContext:
    """Read-only view of an inbound request threaded through every stage."""

    method: str
    path: str
    query: tuple[tuple[str, str], ...] = ()
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    client_host: str | None = None
    principal: Principal | None = None
    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def with_principal(self, principal: Principal | None) -> RequestContext:
        return replace(self, principal=principal)

    @classmethod
    def from_request(
        cls,
        request: Request,
        *,
        principal: Principal | None = None,
        attributes: Mapping[str, Any] | None = None,
    ) -> RequestContext:
        return cls(
            method=request.method.upper(),
            path=request.url.path,
            query=tuple(request.query_params.multi_items()),
            headers=MappingProxyType({k.lower(): v for k, v in request.headers.items()}),
            client_host=request.client.host if request.client else None,
            principal=principal,
            attributes=MappingProxyType(dict(attributes or {})),
        )


Deferred = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class HandlerResult:
    """Status, JSON body and headers produced by a handler or a stage.

    ``deferred`` holds coroutine factories that run after the response has
    been sent to the client.
    """

    status_code: int
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    deferred: tuple[Deferred, ...] = ()

    @classmethod
    def error(cls, status_code: int, detail: str) -> HandlerResult:
        return cls(status_code, {"detail": detail})

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    def with_headers(self, headers: Mapping[str, str]) -> HandlerResult:
        return replace(self, headers={**self.headers, **headers})

    def with_deferred(self, task: Deferred) -> HandlerResult:
        return replace(self, deferred=(*self.deferred, task))


Handler = Callable[[RequestContext], Awaitable[HandlerResult]]
Stage = Callable[[Handler], Handler]


def compose(*stages: Stage) -> Stage:
    """Combine stages so the first one listed runs outermost."""

    def apply(handler: Handler) -> Handler:
        for stage in reversed(stages):
            handler = stage(handler)
        return handler

    return apply


class Pipeline:
    """Run a handler through stages and render the result as a JSON response."""

    def __init__(self, *stages: Stage) -> None:
        self._wrap = compose(*stages)

    async def execute(self, context: RequestContext, handler: Handler) -> HandlerResult:
        return await self._wrap(handler)(context)

    async def run(
        self,
        request: Request,
        handler: Handler,
        *,
        principal: Principal | None = None,
        attributes: Mapping[str, Any] | None = None,
    ) -> JSONResponse:
        context = RequestContext.from_request(request, principal=principal, attributes=attributes)
        result = await self.execute(context, handler)
        tasks = BackgroundTasks()
        for task in result.deferred:
            tasks.add_task(task)
        return JSONResponse(
            status_code=result.status_code,
            content=result.body,
            headers=dict(result.headers),
            background=tasks,
        )
