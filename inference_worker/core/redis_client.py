# core/redis_client.py
"""
Redis client factory with connection pooling and error handling.

Owns the connection pool used for conversation context storage. The pool is
opened and closed by the worker lifecycle controller only.
"""

import redis
from redis.connection import ConnectionPool
from typing import Optional

from inference_worker.core.config import Settings, settings as default_settings
from inference_worker.core.logger import logger


class RedisClient:
    """
    Redis client with connection pooling.

    Thread-safe connection pool that handles:
    - Automatic reconnection on failure
    - TLS/SSL for ElastiCache encryption
    - Connection timeout configuration
    - Periodic health checks on pooled connections
    """

    def __init__(self, settings: Settings = default_settings):
        self.settings = settings
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None

    def connect(self) -> redis.Redis:
        """
        Create connection pool with production-ready settings and verify it.

        Raises:
            redis.ConnectionError: If Redis is unreachable
        """
        settings = self.settings
        try:
            logger.info(
                f"Initializing Redis connection pool",
                extra={
                    "host": settings.REDIS_HOST,
                    "port": settings.REDIS_PORT,
                    "ssl": settings.REDIS_SSL,
                    "max_connections": settings.REDIS_MAX_CONNECTIONS
                }
            )

            pool_kwargs = {
                "host": settings.REDIS_HOST,
                "port": settings.REDIS_PORT,
                "db": settings.REDIS_DB,
                "decode_responses": True,  # Auto-decode bytes to strings
                "socket_timeout": settings.REDIS_SOCKET_TIMEOUT,
                "socket_connect_timeout": settings.REDIS_SOCKET_CONNECT_TIMEOUT,
                "max_connections": settings.REDIS_MAX_CONNECTIONS,
                "retry_on_timeout": True,
                "health_check_interval": 30  # Check connection health every 30s
            }

            """
            TLS/SSL uses a dedicated connection class in redis-py pools
            """
            if settings.REDIS_SSL:
                pool_kwargs["connection_class"] = redis.SSLConnection
                pool_kwargs["ssl_cert_reqs"] = None  # AWS manages certificates

            if settings.REDIS_PASSWORD:
                pool_kwargs["password"] = settings.REDIS_PASSWORD

            self._pool = ConnectionPool(**pool_kwargs)
            self._client = redis.Redis(connection_pool=self._pool)

            self._client.ping()
            logger.info("Redis connection pool initialized successfully")
            return self._client

        except redis.ConnectionError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise
        except Exception as e:
            logger.error(f"Unexpected error initializing Redis: {e}")
            raise

    def close(self):
        """
        Close connection pool (called on worker shutdown).
        """
        if self._pool:
            self._pool.disconnect()
            logger.info("Redis connection pool closed")
        self._pool = None
        self._client = None
