"""Reconciliation FastAPI application.

Web server that processes payment checks, provider webhooks and delivery
agenda requests synchronously via HTTP. Each request under a reconciliation
prefix is wrapped in the domain context.

Usage:
    uvicorn src.app:app --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects the gateways: "production" talks to the real providers,
# anything else uses the in-memory fakes.
import reconciliation.utils.logging  # noqa: E402, F401
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers
from reconciliation.domain import reconciliation  # noqa: E402

reconciliation.init()

_DOMAIN_PREFIXES = ("/payments", "/webhooks", "/deliveries")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Reconciliation API",
    description="Payment reconciliation and delivery scheduling",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the Protean domain context for reconciliation routes."""
    if request.url.path.startswith(_DOMAIN_PREFIXES):
        with reconciliation.domain_context():
            response = await call_next(request)
        return response
    # Health check and docs run outside the domain context
    return await call_next(request)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from reconciliation.api.routes import delivery_router, payment_router, webhook_router  # noqa: E402

app.include_router(payment_router)
app.include_router(webhook_router)
app.include_router(delivery_router)
register_exception_handlers(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": reconciliation.name})
