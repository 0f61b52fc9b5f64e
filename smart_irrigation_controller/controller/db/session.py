# smart_irrigation_controller/controller/db/session.py

from pathlib import Path
from typing import Optional
import os

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine


# -----------------------------------------------------------------------------
# Database location
# -----------------------------------------------------------------------------

BASE_DIR = Path(__file__).resolve().parent.parent.parent.parent
DEFAULT_DB_PATH = BASE_DIR / "runtime" / "controller" / "data" / "irrigation.db"

DEFAULT_DATABASE_URL = f"sqlite:///{DEFAULT_DB_PATH}"


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------

def build_engine(database_url: Optional[str] = None) -> Engine:
    """
    Creates the engine for the event log and crop profile tables and makes sure the tables exist.

    `sqlite://` (no path) gives a single shared in-memory database, used by tests.
    """
    url = database_url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

    if url == "sqlite://":
        engine = create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    elif url.startswith("sqlite:///"):
        Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        # MQTT callbacks and API requests use the engine from different threads
        engine = create_engine(url, echo=False, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(url, echo=False)

    # Register table metadata before create_all
    import smart_irrigation_controller.controller.db.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    return engine
