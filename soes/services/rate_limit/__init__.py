from __future__ import annotations
from typing import Callable, Iterator

import redis
from fastapi import Depends, HTTPException, Request

from soes.connections.redis import get_redis
from soes.services.auth import get_current_user
from soes.models.user import User


def limit_route(seconds: int | Callable[[], int]):
    """Return a FastAPI dependency that rate-limits a user on a route for N seconds.

    Uses Redis TTL to block repeated calls by the same user to the same path
    within the configured time window. The window only starts once the route
    has completed without raising, so a rejected call can be retried at once.
    `seconds` may be a callable so the window can follow settings at request time.
    """

    def _dependency(
        request: Request,
        current_user: User = Depends(get_current_user),
        client: redis.Redis = Depends(get_redis),
    ) -> Iterator[None]:
        window = seconds() if callable(seconds) else seconds
        key = f"rl:{current_user.id}:{request.url.path}"

        # If a TTL exists, the user must wait
        ttl = client.ttl(key)
        if window > 0 and ttl and ttl > 0:
            raise HTTPException(status_code=429, detail=f"Rate limited. Try again in {ttl}s")

        # An exception from the route is raised here and skips the window
        yield

        if window > 0:
            client.setex(name=key, time=window, value="1")

    return _dependency
