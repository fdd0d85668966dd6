"""Storage backends for download-token records."""

import logging
import math
import threading
import time
import zlib
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Iterator

import redis

from links.errors import StoreUnavailable, TokenExhausted, TokenNotFound
from links.records import LinkStatus, Redemption, TokenRecord, record_key, token_hint
from links.redis_scripts import CONSUME_TOKEN_SCRIPT, EXHAUSTED_REPLY
from storage.redis_client import connect_redis

logger = logging.getLogger(__name__)

MEMORY_URL = "memory://"


class TokenStore(ABC):
    """
    Abstract key-value store holding one record per token, each with its own TTL.

    ``consume`` is the atomic check-decrement-read step. The single-step
    primitives (``exists``, ``remaining_uses``, ``decrement``,
    ``storage_reference``) only exist for the degraded redemption path and are
    not atomic when composed.
    """

    @abstractmethod
    def save(self, record: TokenRecord, ttl_seconds: int) -> None:
        """Write ``record`` and start its expiry countdown in one step."""

    @abstractmethod
    def consume(self, token: str) -> Redemption:
        """Atomically spend one use of ``token``.

        Raises TokenNotFound if the record is absent and TokenExhausted if its
        allowance is spent; neither case mutates the record.
        """

    @abstractmethod
    def supports_atomic_consume(self) -> bool:
        ...

    @abstractmethod
    def exists(self, token: str) -> bool:
        ...

    @abstractmethod
    def remaining_uses(self, token: str) -> int:
        ...

    @abstractmethod
    def decrement(self, token: str) -> int:
        """Decrement the counter unconditionally and return the new value."""

    @abstractmethod
    def storage_reference(self, token: str) -> str | None:
        ...

    @abstractmethod
    def inspect(self, token: str) -> LinkStatus | None:
        """Read-only view of a record and its remaining lifetime."""

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass


# ----------------------------------------------------------------------
# Redis
# ----------------------------------------------------------------------

@contextmanager
def _store_errors() -> Iterator[None]:
    try:
        yield
    except redis.RedisError as e:
        raise StoreUnavailable(f"token store error: {e}") from e


class RedisTokenStore(TokenStore):
    """
    Stores each token as a hash at ``download:<token>``:

        storage_key     S3 object key
        downloads_left  remaining redemptions
        created_at      epoch milliseconds

    The whole hash carries the TTL; exhausted records stay until it fires.
    """

    def __init__(self, client: redis.Redis):
        self._redis = client
        self._consume_script = client.register_script(CONSUME_TOKEN_SCRIPT)

    def save(self, record: TokenRecord, ttl_seconds: int) -> None:
        key = record_key(record.token)
        with _store_errors():
            pipe = self._redis.pipeline(transaction=True)
            pipe.hset(
                key,
                mapping={
                    "storage_key": record.storage_reference,
                    "downloads_left": str(record.remaining_uses),
                    "created_at": str(record.created_at),
                },
            )
            pipe.expire(key, ttl_seconds)
            pipe.execute()

    def consume(self, token: str) -> Redemption:
        with _store_errors():
            reply = self._consume_script(keys=[record_key(token)])

        if reply is None:
            raise TokenNotFound("link expired or invalid")
        if reply == EXHAUSTED_REPLY:
            raise TokenExhausted("download limit reached")

        storage_key, remaining = reply
        if not storage_key:
            logger.error("Token %s has no storage key", token_hint(token))
            raise TokenNotFound("file mapping missing")
        return Redemption(token=token, storage_reference=storage_key, remaining_uses=int(remaining))

    def supports_atomic_consume(self) -> bool:
        try:
            self._redis.script_load(CONSUME_TOKEN_SCRIPT)
        except redis.ResponseError as e:
            # Some managed Redis offerings disable EVAL/SCRIPT entirely
            logger.debug("SCRIPT LOAD rejected: %s", e)
            return False
        except redis.RedisError as e:
            raise StoreUnavailable(f"token store error: {e}") from e
        return True

    def exists(self, token: str) -> bool:
        with _store_errors():
            return self._redis.exists(record_key(token)) == 1

    def remaining_uses(self, token: str) -> int:
        with _store_errors():
            return int(self._redis.hget(record_key(token), "downloads_left") or 0)

    def decrement(self, token: str) -> int:
        key = record_key(token)
        with _store_errors():
            pipe = self._redis.pipeline(transaction=True)
            pipe.hincrby(key, "downloads_left", -1)
            pipe.ttl(key)
            remaining, ttl = pipe.execute()

            # No TTL means HINCRBY just created the hash: the record expired
            # after the caller's existence check.
            if ttl == -1:
                self._redis.delete(key)
                raise TokenNotFound("link expired or invalid")
        return int(remaining)

    def storage_reference(self, token: str) -> str | None:
        with _store_errors():
            return self._redis.hget(record_key(token), "storage_key")

    def inspect(self, token: str) -> LinkStatus | None:
        key = record_key(token)
        with _store_errors():
            pipe = self._redis.pipeline(transaction=True)
            pipe.hgetall(key)
            pipe.ttl(key)
            fields, ttl = pipe.execute()

        if not fields:
            return None
        record = TokenRecord(
            token=token,
            storage_reference=fields.get("storage_key", ""),
            remaining_uses=int(fields.get("downloads_left", 0)),
            created_at=int(fields.get("created_at", 0)),
        )
        return LinkStatus(record=record, expires_in=ttl if ttl >= 0 else None)

    def ping(self) -> bool:
        try:
            return bool(self._redis.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        self._redis.close()


# ----------------------------------------------------------------------
# In-memory
# ----------------------------------------------------------------------

_LOCK_STRIPES = 64


class InMemoryTokenStore(TokenStore):
    """
    Process-local store for development and tests.

    Atomicity comes from striped locks: a token always maps to the same lock,
    so consumes of one token are serialized while most distinct tokens proceed
    in parallel. Expiry is checked lazily against ``clock``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._records: dict[str, dict] = {}
        self._locks = [threading.Lock() for _ in range(_LOCK_STRIPES)]

    def _lock_for(self, token: str) -> threading.Lock:
        return self._locks[zlib.crc32(token.encode()) % _LOCK_STRIPES]

    def _live(self, token: str) -> dict | None:
        entry = self._records.get(token)
        if entry is None:
            return None
        if entry["expires_at"] <= self._clock():
            self._records.pop(token, None)
            return None
        return entry

    def save(self, record: TokenRecord, ttl_seconds: int) -> None:
        with self._lock_for(record.token):
            self._records[record.token] = {
                "storage_key": record.storage_reference,
                "downloads_left": record.remaining_uses,
                "created_at": record.created_at,
                "expires_at": self._clock() + ttl_seconds,
            }

    def consume(self, token: str) -> Redemption:
        with self._lock_for(token):
            entry = self._live(token)
            if entry is None:
                raise TokenNotFound("link expired or invalid")
            if entry["downloads_left"] <= 0:
                raise TokenExhausted("download limit reached")
            entry["downloads_left"] -= 1
            remaining = entry["downloads_left"]
            storage_key = entry["storage_key"]

        if not storage_key:
            raise TokenNotFound("file mapping missing")
        return Redemption(token=token, storage_reference=storage_key, remaining_uses=remaining)

    def supports_atomic_consume(self) -> bool:
        return True

    def exists(self, token: str) -> bool:
        with self._lock_for(token):
            return self._live(token) is not None

    def remaining_uses(self, token: str) -> int:
        with self._lock_for(token):
            entry = self._live(token)
            return entry["downloads_left"] if entry else 0

    def decrement(self, token: str) -> int:
        with self._lock_for(token):
            entry = self._live(token)
            if entry is None:
                raise TokenNotFound("link expired or invalid")
            entry["downloads_left"] -= 1
            return entry["downloads_left"]

    def storage_reference(self, token: str) -> str | None:
        with self._lock_for(token):
            entry = self._live(token)
            return entry["storage_key"] if entry else None

    def inspect(self, token: str) -> LinkStatus | None:
        with self._lock_for(token):
            entry = self._live(token)
            if entry is None:
                return None
            record = TokenRecord(
                token=token,
                storage_reference=entry["storage_key"] or "",
                remaining_uses=entry["downloads_left"],
                created_at=entry["created_at"],
            )
            expires_in = math.ceil(entry["expires_at"] - self._clock())
        return LinkStatus(record=record, expires_in=expires_in)


def create_store(config: dict) -> TokenStore:
    """Create the token store named by ``redis_url``; ``memory://`` selects the in-process store."""
    if config["redis_url"] == MEMORY_URL:
        logger.warning("Using in-memory token store; links do not survive a restart")
        return InMemoryTokenStore()
    return RedisTokenStore(connect_redis(config))
