import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from abacatrack import __version__
from abacatrack.config import settings
from abacatrack.middleware.exceptions import register_exception_handlers
from abacatrack.routers import allocations, deliveries, health, reports, stock
from abacatrack.services.scheduler import lifespan

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="AbacaTrack",
    description="Seedling allocation, fiber stock and delivery tracking",
    version=__version__,
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
app.include_router(allocations.router, prefix="/api/allocations", tags=["allocations"])
app.include_router(stock.router, prefix="/api/stock", tags=["stock"])
app.include_router(deliveries.router, prefix="/api/deliveries", tags=["deliveries"])
app.include_router(reports.router, prefix="/api/reports", tags=["reports"])
