from sijil_api.db.models import Base, utcnow
from sijil_api.db.session import build_session_factory, get_engine, init_db, with_tenant

__all__ = [
    "Base",
    "build_session_factory",
    "get_engine",
    "init_db",
    "utcnow",
    "with_tenant",
]
