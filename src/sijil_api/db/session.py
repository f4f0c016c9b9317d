"""Engine and session helpers."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import Engine, Select, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from sijil_api.db.models import Base
from sijil_api.settings import DEFAULT_DATABASE_URL


def get_engine(dsn: str | None = None, echo: bool = False) -> Engine:
    """Return a SQLAlchemy engine.

    File-backed SQLite databases get their parent directory created. In-memory
    SQLite shares one connection so every request thread sees the same data.
    """

    dsn = dsn or DEFAULT_DATABASE_URL
    if dsn in {"sqlite://", "sqlite:///:memory:"}:
        return create_engine(
            "sqlite://",
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if dsn.startswith("sqlite:///"):
        path_str = dsn.replace("sqlite:///", "", 1)
        db_path = Path(path_str)
        if not db_path.is_absolute():
            db_path = Path.cwd() / db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return create_engine(dsn, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(dsn, echo=echo, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def with_tenant(statement: Select, model, tenant_id: str) -> Select:
    return statement.where(model.tenant_id == tenant_id)
