from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from db.models import Base


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine: Engine = create_engine(database_url, echo=echo, connect_args=connect_args)
    Base.metadata.create_all(engine)
    return engine


def init_db(database_url: str, echo: bool = False) -> Session:
    return sessionmaker(create_db_engine(database_url, echo=echo))()
