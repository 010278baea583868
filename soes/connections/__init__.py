from soes.connections.mongo import Database, get_database, mongo_lifespan
from soes.connections.redis import get_redis, redis_lifespan

__all__ = ["Database", "get_database", "mongo_lifespan", "get_redis", "redis_lifespan"]
