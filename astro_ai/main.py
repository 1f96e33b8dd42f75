# =============================================
# File: astro_ai/main.py
# Purpose: FastAPI app: routers, request logging middleware, metrics wiring
# =============================================
from __future__ import annotations

import time
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from astro_ai.deps import Services, build_services
from astro_ai.routers import chat, metrics, recommend, search
from astro_ai.utils import slog
from astro_ai.utils.logging import configure_logging
from astro_ai.utils.metrics import record_endpoint, record_request


def create_app(services: Optional[Services] = None) -> FastAPI:
    configure_logging()
    app = FastAPI(title="Astro Intelligence AI Services")
    app.state.services = services or build_services()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def _logging_middleware(request, call_next):
        start = time.perf_counter()
        req_id = slog.new_request_id()
        client_ip = request.client.host if request.client else None
        try:
            response = await call_next(request)
        except Exception as e:
            latency_ms = int((time.perf_counter() - start) * 1000)
            ctx = slog.request_context(request.state)
            slog.log_event(
                "request.error",
                request_id=req_id,
                path=str(request.url.path),
                method=request.method,
                latency_ms=latency_ms,
                client_ip=client_ip,
                error=type(e).__name__,
                **ctx,
            )
            raise
        latency_ms = int((time.perf_counter() - start) * 1000)
        ctx = slog.request_context(request.state)
        slog.finalize_request_log(
            request_id=req_id,
            method=request.method,
            path=str(request.url.path),
            status=response.status_code,
            latency_ms=latency_ms,
            client_ip=client_ip,
            ctx=ctx,
        )
        record_request(latency_ms=latency_ms, provider=ctx.get("provider"), error_code=ctx.get("error_code"))
        route = request.scope.get("route")
        record_endpoint(method=request.method, path=getattr(route, "path", None) or str(request.url.path),
                        latency_ms=latency_ms)
        response.headers["X-Request-ID"] = req_id
        return response

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(chat.router)
    app.include_router(recommend.router)
    app.include_router(search.router)
    app.include_router(metrics.router)
    return app


app = create_app()
