from contextlib import contextmanager

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker, DeclarativeBase
from sqlalchemy.pool import QueuePool, StaticPool
from hostel.config import settings
from hostel.utils.exceptions import ConflictException
import logging

logger = logging.getLogger(__name__)


# ─── Engine ────────────────────────────────────────────────────────────────────
def _use_immediate_transactions(engine: Engine) -> None:
    """
    Make pysqlite open every transaction with BEGIN IMMEDIATE.

    The driver's own deferred BEGIN lets two writers both take a shared lock
    and then deadlock on the upgrade; IMMEDIATE takes the write lock up front so
    concurrent writers queue on the lock timeout instead.
    """
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine for `url`, applying the SQLite locking setup when needed."""
    if not url.startswith("sqlite"):
        return create_engine(
            url,
            poolclass=QueuePool,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_timeout=settings.DATABASE_POOL_TIMEOUT,
            pool_pre_ping=True,          # Detect stale connections before using them
            echo=echo,
        )

    connect_args = {"check_same_thread": False, "timeout": settings.DATABASE_LOCK_TIMEOUT}
    if url in ("sqlite://", "sqlite:///:memory:"):
        engine = create_engine(url, connect_args=connect_args, poolclass=StaticPool, echo=echo)
    else:
        engine = create_engine(url, connect_args=connect_args, echo=echo)
    _use_immediate_transactions(engine)
    return engine


engine = build_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)


# ─── Session Factory ───────────────────────────────────────────────────────────
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,      # Avoid DetachedInstanceError after commit
)


# ─── Base Model ────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.
    All models in hostel/models/ should inherit from this class.
    """
    pass


# ─── Dependency Injection ──────────────────────────────────────────────────────
def get_db():
    """
    FastAPI dependency that provides a database session per request.
    Automatically closes session after request completes.

    Usage:
        @router.get("/items")
        def get_items(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# ─── Unit of Work ──────────────────────────────────────────────────────────────
@contextmanager
def atomic(db: Session):
    """
    Commit everything done inside the block as one unit, or nothing at all.

    Usage:
        with atomic(db):
            room_service.adjust_occupancy(db, room_id, +1)
            ...status update...

    Any exception rolls the session back and propagates. Constraint violations
    surface as ConflictException so callers only ever see typed errors.
    """
    try:
        yield db
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Integrity violation rolled back: {e.orig}")
        raise ConflictException("Operation conflicts with an existing record") from e
    except Exception:
        db.rollback()
        raise


# ─── Health Check ──────────────────────────────────────────────────────────────
def check_db_connection() -> bool:
    """Verify database is reachable. Used at startup."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
