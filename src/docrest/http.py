"""FastAPI adapter: serve every processor of a Service over HTTP."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response

from docrest.processor import Handler
from docrest.response import Rsp, gen_rsp
from docrest.service import Service

logger = logging.getLogger(__name__)

_BODY_METHODS = ("POST", "PUT", "PATCH")
_MEDIA_TYPE = "application/json; charset=utf-8"


def write_rsp(rsp: Rsp, *, pretty: bool = False) -> Response:
    body = json.dumps(rsp.wire(), indent=4 if pretty else None, ensure_ascii=False)
    return Response(content=body, status_code=rsp.status, media_type=_MEDIA_TYPE)


def endpoint(method: str, handler: Handler) -> Callable[[Request], Awaitable[Response]]:
    """Adapt a (vars, query, body) handler to a Starlette request."""

    async def serve(request: Request) -> Response:
        query = dict(request.query_params)
        pretty = query.get("pretty", "").lower() == "true"
        vars = dict(request.path_params)
        body = None
        if method in _BODY_METHODS:
            try:
                body = await request.body()
            except Exception as exc:
                logger.warning("read body error: %s", exc)
                return write_rsp(gen_rsp(500, f"read body error: {exc}"), pretty=pretty)
        rsp = await run_in_threadpool(handler, vars, query, body)
        return write_rsp(rsp, pretty=pretty)

    return serve


def mount(app: FastAPI, service: Service) -> FastAPI:
    """Register the routes of every processor of ``service`` on ``app``."""
    for method, path, handler in service.routes():
        app.add_api_route(
            path,
            endpoint(method, handler),
            methods=[method],
            name=f"{method.lower()} {path}",
            include_in_schema=False,
        )
    return app


def create_app(service: Service, **kwargs: Any) -> FastAPI:
    """A FastAPI app serving ``service``; the service is closed on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        service.close()

    app = FastAPI(lifespan=lifespan, **kwargs)
    return mount(app, service)
