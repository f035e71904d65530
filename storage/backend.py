from __future__ import annotations

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


def connect_redis(host: str = 'localhost', port: int = 6379, db: int = 0) -> Optional[Any]:
    """Return a live Redis client, or None when Redis cannot be used"""
    try:
        import redis
        client = redis.Redis(host=host, port=port, db=db, decode_responses=True)
        # Test connection
        client.ping()
        logger.info(f"Connected to Redis at {host}:{port}/{db}")
        return client
    except ImportError:
        logger.warning("Redis not available, falling back to in-memory storage")
    except Exception as e:
        logger.warning(f"Redis connection failed: {e}, falling back to in-memory storage")
    return None
