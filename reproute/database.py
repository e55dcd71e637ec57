from contextlib import contextmanager
from typing import Iterator, Optional, Type
from sqlalchemy import create_engine
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker, DeclarativeBase
from .config import settings
from .errors import ValidationError

def normalize_db_url(url: str) -> str:
    # Use psycopg v3 driver with SQLAlchemy
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://"):]
    return url

def make_engine(url: str) -> Engine:
    url = normalize_db_url(url)
    kwargs = {"pool_pre_ping": True, "future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    return create_engine(url, **kwargs)

def make_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, future=True)

_engine = None  # lazy-init to avoid driver import at module import time
_ledger_engine = None
_SessionLocal: Optional[sessionmaker] = None
_LedgerSessionLocal: Optional[sessionmaker] = None

def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = make_engine(settings.DATABASE_URL)
    return _engine

def get_sessionmaker() -> sessionmaker:
    """Directory store: partners, capacity counters, allocations, evidence."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = make_sessionmaker(get_engine())
    return _SessionLocal

def get_ledger_sessionmaker() -> sessionmaker:
    """Ledger store: reputation counters and order records."""
    global _ledger_engine, _LedgerSessionLocal
    if _LedgerSessionLocal is None:
        if settings.LEDGER_DATABASE_URL:
            _ledger_engine = make_engine(settings.LEDGER_DATABASE_URL)
            _LedgerSessionLocal = make_sessionmaker(_ledger_engine)
        else:
            _LedgerSessionLocal = get_sessionmaker()
    return _LedgerSessionLocal

class Base(DeclarativeBase):
    pass

def insert_ignore(db: Session, model, **values):
    """INSERT that leaves an existing row with the same key untouched."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model).values(**values).on_conflict_do_nothing()
    if dialect == "sqlite":
        return sqlite_insert(model).values(**values).on_conflict_do_nothing()
    raise NotImplementedError(f"insert_ignore is not supported on {dialect}")

@contextmanager
def store_session(factory: sessionmaker, unavailable: Type[Exception]) -> Iterator[Session]:
    """Session scope that turns driver failures into the store's typed error."""
    db = factory()
    try:
        yield db
    except IntegrityError as exc:
        db.rollback()
        raise ValidationError(f"write rejected by store: {exc.orig}") from exc
    except DBAPIError as exc:
        db.rollback()
        raise unavailable(str(exc.orig or exc)) from exc
    finally:
        db.close()
