from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import logging
import os

from .config import settings
from .database import engine
from .errors import (
    QuoteError, InvalidInput, InvalidPricingTier, InvalidState,
    ConcurrentModification, PersistenceFailure, NotFound,
)
from .routers import quotes, products, pricing

logger = logging.getLogger("insulquote")

BASE_REVISION = "5c2e8f1a9b7d"

ERROR_STATUS = {
    NotFound: 404,
    InvalidInput: 400,
    InvalidPricingTier: 400,
    InvalidState: 409,
    ConcurrentModification: 409,
    PersistenceFailure: 503,
}


def _run_migrations():
    """Run pending Alembic migrations on startup.

    Databases created by Base.metadata.create_all() (tests, early dev) get the
    base migration stamped first so upgrade doesn't try to recreate tables.
    """
    try:
        from alembic.config import Config
        from alembic import command
        from sqlalchemy import inspect

        alembic_ini = os.path.join(os.path.dirname(__file__), "..", "alembic.ini")
        if not os.path.exists(alembic_ini):
            logger.info("alembic.ini not found, skipping migrations")
            return

        alembic_cfg = Config(alembic_ini)
        alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)

        insp = inspect(engine)
        tables = insp.get_table_names()
        if "alembic_version" not in tables and "quotes" in tables:
            logger.info(f"Stamping base migration {BASE_REVISION} (tables already exist)")
            command.stamp(alembic_cfg, BASE_REVISION)

        logger.info("Running pending Alembic migrations...")
        command.upgrade(alembic_cfg, "head")
        logger.info("Migrations complete")

    except Exception as e:
        # Never let migration errors prevent app startup
        logger.warning(f"Alembic migration warning: {e}")


app = FastAPI(
    title="InsulQuote",
    description="Insulation quoting core: pricing, quote versions and acceptance",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(quotes.router, prefix="/api")
app.include_router(products.router, prefix="/api")
app.include_router(pricing.router, prefix="/api")


@app.exception_handler(QuoteError)
def quote_error_handler(request: Request, exc: QuoteError):
    status_code = ERROR_STATUS.get(type(exc), 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.get("/health")
def health():
    return {"status": "ok", "app": settings.COMPANY_NAME}


@app.on_event("startup")
def auto_migrate():
    """Run pending Alembic migrations on startup."""
    _run_migrations()


@app.on_event("startup")
def auto_seed():
    """Seed the default product catalog on first run."""
    from .database import SessionLocal
    from .gateway import QuoteGateway
    from .routers.products import seed_default_products
    db = SessionLocal()
    try:
        gateway = QuoteGateway(db)
        with gateway.atomic():
            seeded = seed_default_products(gateway)
        if seeded:
            logger.info(f"Seeded {seeded} default products")
    except QuoteError as e:
        logger.warning(f"Product seed skipped: {e.message}")
    finally:
        db.close()
