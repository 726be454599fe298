import json
import logging
from typing import Optional

import redis.asyncio as aioredis
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

IDEMPOTENCY_TTL = 86400  # 24 hours


def _cache_key(key: str) -> str:
    return f"idempotency:payment:{key}"


async def check_idempotency(redis: aioredis.Redis, key: str) -> Optional[JSONResponse]:
    """
    Returns the stored response if this Idempotency-Key was already used for a
    payment initiation, otherwise None (proceed normally). A Redis outage
    degrades to "not seen" so payments keep flowing.
    """
    try:
        cached = await redis.get(_cache_key(key))
    except RedisError as exc:
        logger.warning("Idempotency lookup failed for key=%s: %s", key, exc)
        return None

    if cached:
        data = json.loads(cached)
        return JSONResponse(
            content=data["body"],
            status_code=data["status_code"],
            headers={"X-Idempotency-Replay": "true"},
        )
    return None


async def store_idempotency_result(redis: aioredis.Redis, key: str, status_code: int, body: dict) -> None:
    """Persist the response for the given idempotency key (24h TTL)."""
    try:
        await redis.setex(
            _cache_key(key),
            IDEMPOTENCY_TTL,
            json.dumps({"status_code": status_code, "body": body}),
        )
    except RedisError as exc:
        logger.warning("Could not store idempotency result for key=%s: %s", key, exc)
