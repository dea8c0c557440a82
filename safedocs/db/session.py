from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker

from ..config import settings


_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=_connect_args)
SessionLocal = scoped_session(sessionmaker(autocommit=False, autoflush=False, bind=engine))


def get_engine():
    return engine
