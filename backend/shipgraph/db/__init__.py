import importlib
import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from shipgraph.config import settings
from shipgraph.utils.log import get_logger

log = get_logger("db", "DB")

Base = declarative_base()

# every module declaring tables; imported before create_all so metadata is populated
MODEL_MODULES = [
    "shipgraph.models.customer",
    "shipgraph.models.load",
    "shipgraph.models.package",
    "shipgraph.models.wide_item",
]


def make_engine(url: str) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        # stores open short-lived sessions from request threads and the scheduler
        connect_args["check_same_thread"] = False
    return create_engine(url, future=True, echo=False, connect_args=connect_args)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = make_engine(settings.DATABASE_URL)
SessionLocal = make_session_factory(engine)


def init_db(reset: bool = False, bind: Engine = None):
    """
    Initialize DB schema.

    Behavior:
      - If reset=True or the RESET_DB env var is set to 1/true/yes, drop & recreate tables.
      - Otherwise, leave existing tables in place.

    Both store backends share one metadata, so the relational tables and the
    single wide-column table are always created together.
    """
    bind = bind or engine
    for mod in MODEL_MODULES:
        importlib.import_module(mod)

    env_reset = os.environ.get("RESET_DB", "false").lower() in ("1", "true", "yes")
    if reset or env_reset:
        log.info("Resetting database (reset requested)")
        Base.metadata.drop_all(bind=bind)

    Base.metadata.create_all(bind=bind)
    log.info("Database initialized (%d tables)", len(Base.metadata.tables))
