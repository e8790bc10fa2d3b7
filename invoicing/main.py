import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from invoicing.core.config import CORS_ORIGINS, DATABASE_URL, IS_DEV
from invoicing.core.database import Base, engine
from invoicing.core.error_handlers import install_exception_handlers
from invoicing.core.logging_setup import configure_logging
from invoicing.core.startup_checks import apply_migrations, ensure_migrations_applied, validate_database_environment
from invoicing.middleware.observability import ObservabilityMiddleware
import invoicing.models  # garante que os models são importados antes do create_all

from invoicing.routers.admin import router as admin_router
from invoicing.routers.customers import router as customers_router
from invoicing.routers.invoices import router as invoices_router
from invoicing.routers.products import router as products_router
from invoicing.routers.users import router as users_router

configure_logging()

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Invoicing API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        # Em dev com SQLite cria as tabelas direto; fora disso, migrations
        if IS_DEV and DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        apply_migrations(alembic_config_path=ALEMBIC_CONFIG_PATH)
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
    except Exception:
        logger.exception("%s ERROR startup failed", STARTUP_PREFIX)
        raise


install_exception_handlers(app)

# Routers
app.include_router(users_router)
app.include_router(customers_router)
app.include_router(products_router)
app.include_router(invoices_router)
app.include_router(admin_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "ok"}
