from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable

from .config import get_settings
from .metrics import redis_op_errors_total, redis_op_retries_total

logger = logging.getLogger(__name__)


class RedisUnavailable(Exception):
    pass


class RedisOpFailed(Exception):
    pass


async def redis_op(client, op_fn: Callable[..., Awaitable[Any]], *op_args, retries: int | None = None, **op_kwargs) -> Any:
    """Execute a redis operation with jittered retries.

    client: redis.asyncio client (or compatible fake)
    op_fn: async callable that accepts the client and performs the op. Any
        additional positional/keyword args are forwarded after the client.
    retries: retries after the first failure (default REDIS_OP_RETRIES)

    Raises:
      RedisUnavailable if no client is configured.
      RedisOpFailed if the operation fails after retries.
    """
    if client is None:
        raise RedisUnavailable("redis client not configured")
    cfg = get_settings()
    attempts = 1 + (cfg.REDIS_OP_RETRIES if retries is None else retries)
    last_exc: Exception | None = None
    for attempt in range(attempts):
        try:
            return await op_fn(client, *op_args, **op_kwargs)
        except Exception as e:
            last_exc = e
            redis_op_errors_total.inc()
            logger.warning("redis op failed (attempt %d/%d): %s", attempt + 1, attempts, e)
            if attempt + 1 < attempts:
                redis_op_retries_total.inc()
                jitter = random.uniform(0, cfg.REDIS_RECONNECT_JITTER_MS / 1000.0)
                await asyncio.sleep(cfg.REDIS_RECONNECT_BASE_DELAY * (2 ** attempt) + jitter)
    raise RedisOpFailed(str(last_exc)) from last_exc
