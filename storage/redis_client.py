import redis


def connect_redis(config: dict) -> redis.Redis:
    """Build the process-wide Redis client. Connections are opened lazily on first use."""
    timeout = config.get("redis_timeout", 5)
    return redis.Redis.from_url(
        config["redis_url"],
        decode_responses=True,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
    )
