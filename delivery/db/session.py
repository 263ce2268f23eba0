from contextlib import contextmanager
import os
from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ..models.base import Base


DEFAULT_DATABASE_URL = "sqlite:///data/app.db"


def _ensure_sqlite_dir(database_url: str) -> None:
    # Ensure sqlite file parent directory exists to avoid 'unable to open database file'
    if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
        db_path = database_url.split("sqlite:///")[-1]
        try:
            parent = Path(db_path).expanduser().resolve().parent
            parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            # real error will surface on connect if still invalid
            pass


def create_schema(engine) -> None:
    # import models so every table is registered on Base.metadata
    from ..models import menu_item, order, rate_limit_counter, restaurant, user, webhook_event  # noqa: F401

    Base.metadata.create_all(engine)


def make_session_factory(database_url: str, *, create_tables: bool = True):
    """Build a transactional session context manager bound to its own engine."""
    _ensure_sqlite_dir(database_url)
    bound_engine = create_engine(database_url, future=True)
    if create_tables:
        create_schema(bound_engine)
    factory = sessionmaker(bind=bound_engine, autoflush=False, expire_on_commit=False, future=True)

    @contextmanager
    def session_scope():
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    session_scope.engine = bound_engine
    return session_scope


_default_factory = None


def get_session():
    """Session scope on DATABASE_URL; the engine is built on first use."""
    global _default_factory
    if _default_factory is None:
        _default_factory = make_session_factory(os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL))
    return _default_factory()
