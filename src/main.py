import logging
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.observability import incr_metric, log_event, sanitize_error
from src.routers import (
    admin_orphans,
    auth_routes,
    imports,
    internal_routing,
    leads,
    partners,
    targeting,
    webhooks,
)

app = FastAPI(title="Lead Intake Engine", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_request_id(request: Request, call_next):
    request_id = (
        request.headers.get("X-Request-ID")
        or request.headers.get("X-Correlation-ID")
        or str(uuid4())
    )
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    incr_metric("http.unhandled_error", path=request.url.path)
    log_event(
        "unhandled_error",
        level=logging.ERROR,
        request_id=getattr(request.state, "request_id", None),
        path=request.url.path,
        error_type=exc.__class__.__name__,
        error=sanitize_error(exc),
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


app.include_router(auth_routes.router)
app.include_router(webhooks.router)
app.include_router(leads.router)
app.include_router(imports.router)
app.include_router(partners.router)
app.include_router(targeting.router)
app.include_router(admin_orphans.router)
app.include_router(internal_routing.router)


@app.get("/")
async def root():
    return {"status": "ok", "service": "lead-intake-engine"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
