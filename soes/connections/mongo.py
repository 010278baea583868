from __future__ import annotations

import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Iterator, Optional

import certifi
from fastapi import FastAPI, Request
from mongoengine import connect, disconnect
from mongoengine.connection import DEFAULT_CONNECTION_NAME, get_connection, get_db
from pymongo import MongoClient
from pymongo.client_session import ClientSession

from soes.models.attempt import Attempt
from soes.models.exam import Exam
from soes.models.question import Question
from soes.models.result import Result
from soes.models.user import User
from soes.utils.config import Settings, settings


logger = logging.getLogger(__name__)


DOCUMENTS = (User, Exam, Question, Attempt, Result)


class Database:
    """Process-wide data-access context handed to every service.

    Owns the mongoengine connection the documents are bound to. Created at
    startup, closed at shutdown.
    """

    def __init__(self, alias: str = DEFAULT_CONNECTION_NAME, transactions: bool = False):
        self.alias = alias
        self.transactions = transactions

    @classmethod
    def connect(cls, config: Settings = settings, **client_kwargs: Any) -> "Database":
        kwargs = {"tz_aware": True, **client_kwargs}
        if config.mongo_tls or config.mongo_srv:
            kwargs["tlsCAFile"] = certifi.where()
        connect(host=config.mongo_uri, alias=DEFAULT_CONNECTION_NAME, **kwargs)
        logger.info("Connected to MongoDB database %s", config.mongo_db)
        return cls(transactions=config.mongo_transactions)

    @property
    def client(self) -> MongoClient:
        return get_connection(self.alias)

    @property
    def name(self) -> str:
        return get_db(self.alias).name

    def ensure_indexes(self) -> None:
        for document in DOCUMENTS:
            document.ensure_indexes()

    @contextmanager
    def transaction(self) -> Iterator[Optional[ClientSession]]:
        """Yield a session inside a transaction, or None when transactions are disabled.

        Callers pass the yielded value as `session=` to every write; with None
        they must provide their own compensation on failure.
        """
        if not self.transactions:
            yield None
            return
        with self.client.start_session() as session:
            with session.start_transaction():
                yield session

    def drop(self) -> None:
        self.client.drop_database(self.name)

    def close(self) -> None:
        disconnect(alias=self.alias)


def init_mongo(app: FastAPI, config: Settings = settings) -> Database:
    database = Database.connect(config)
    database.ensure_indexes()
    app.state.db = database
    return database


def close_mongo(app: FastAPI) -> None:
    database: Database | None = getattr(app.state, "db", None)
    if database is not None:
        try:
            database.close()
        finally:
            app.state.db = None


def get_database(request: Request) -> Database:
    database: Database | None = getattr(request.app.state, "db", None)
    assert database is not None, "MongoDB not initialized"
    return database


@asynccontextmanager
async def mongo_lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_mongo(app)
    try:
        yield
    finally:
        close_mongo(app)
