import redis
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from fastapi import FastAPI, Request

from soes.utils.config import Settings, settings


def init_redis(app: FastAPI, config: Settings = settings) -> redis.Redis:
    client = redis.Redis(
        db=config.redis_db,
        port=config.redis_port,
        host=config.redis_host,
        password=config.redis_password,
        decode_responses=True,
        socket_timeout=2.0,
    )
    app.state.redis = client
    return client


def close_redis(app: FastAPI) -> None:
    client: Optional[redis.Redis] = getattr(app.state, "redis", None)
    if client is not None:
        try:
            client.close()
        finally:
            app.state.redis = None


def get_redis(request: Request) -> redis.Redis:
    client: Optional[redis.Redis] = getattr(request.app.state, "redis", None)
    assert client is not None, "Redis not initialized"
    return client


@asynccontextmanager
async def redis_lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_redis(app)
    try:
        yield
    finally:
        close_redis(app)
