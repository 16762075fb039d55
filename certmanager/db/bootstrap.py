# certmanager/db/bootstrap.py
import os

import structlog
from alembic import command
from alembic.config import Config

from certmanager.core.config import settings
from certmanager.db.init_db import init_db
from certmanager.db.session import SessionLocal

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))

logger = structlog.get_logger()


def run_migrations_and_seed() -> None:
    # SQLite em arquivo: garante o diretório de dados
    os.makedirs(settings.DATA_DIR, exist_ok=True)

    # Aponta explicitamente para alembic.ini e migrations/
    cfg = Config(os.path.join(BASE_DIR, "alembic.ini"))
    cfg.set_main_option("script_location", os.path.join(BASE_DIR, "migrations"))

    # Aplica todas as migrações
    command.upgrade(cfg, "head")
    logger.info("db.migrated")

    # Roda o seed
    with SessionLocal() as db:
        init_db(db)
