from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase


class Base(DeclarativeBase): pass


def make_session_factory(database_url: str):
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    elif database_url.startswith("postgresql"):
        connect_args = {"client_encoding": "utf8"}

    engine = create_engine(
        database_url,
        pool_pre_ping=True,
        connect_args=connect_args,
        echo=False,
    )
    return engine, sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
