from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from portal.config import settings
from portal.middleware.exceptions import register_exception_handlers
from portal.routers import auth, editor, health, state_permissions, states
from portal.services.editor_sessions import lifespan

app = FastAPI(
    title="State Permissions",
    description="Which products may be sold in which US state",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])

# Authenticated reads
app.include_router(states.states_router, prefix="/api/states", tags=["states"])
app.include_router(states.catalog_router, prefix="/api/catalog", tags=["catalog"])

# Mutations (gated by the permissions pipeline)
app.include_router(
    state_permissions.router, prefix="/api/state-permissions", tags=["state-permissions"]
)
app.include_router(editor.router, prefix="/api/editor", tags=["editor"])
