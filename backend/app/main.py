from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.middleware.exceptions import register_exception_handlers
from app.routers import health, packing, picker_tasks
from app.services.scheduler import lifespan

app = FastAPI(
    title="PickPack",
    description="Order packing plans & picker task queue",
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
app.include_router(picker_tasks.router, prefix="/api/picker-tasks", tags=["picker-tasks"])
app.include_router(packing.router, prefix="/api/packing", tags=["packing"])
