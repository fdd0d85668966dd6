"""Creation and redemption of download tokens."""

import enum
import logging
import re
import secrets
import time
from abc import ABC, abstractmethod

from config import ConfigError
from links.errors import TokenExhausted, TokenNotFound, ValidationError
from links.records import LinkStatus, Redemption, TokenRecord, token_hint
from links.token_store import TokenStore

logger = logging.getLogger(__name__)


class RedemptionMode(enum.Enum):
    ATOMIC = "atomic"
    DEGRADED = "degraded"


class RedemptionStrategy(ABC):
    mode: RedemptionMode

    def __init__(self, store: TokenStore):
        self.store = store

    @abstractmethod
    def redeem(self, token: str) -> Redemption:
        ...


class AtomicRedemption(RedemptionStrategy):
    """Check, decrement and read in one store-side step."""

    mode = RedemptionMode.ATOMIC

    def redeem(self, token: str) -> Redemption:
        return self.store.consume(token)


class NonAtomicRedemption(RedemptionStrategy):
    """
    Fallback for stores without server-side scripting.

    Each step is a separate round trip. Two callers that both read a counter
    of 1 before either decrements will both succeed, so the usage cap can be
    exceeded under concurrency.
    """

    mode = RedemptionMode.DEGRADED

    def redeem(self, token: str) -> Redemption:
        if not self.store.exists(token):
            raise TokenNotFound("link expired or invalid")
        if self.store.remaining_uses(token) <= 0:
            raise TokenExhausted("download limit reached")
        remaining = self.store.decrement(token)
        storage_key = self.store.storage_reference(token)
        if not storage_key:
            raise TokenNotFound("file mapping missing")
        return Redemption(token=token, storage_reference=storage_key, remaining_uses=remaining)


def select_strategy(store: TokenStore, preferred: str = "auto") -> RedemptionStrategy:
    """Pick the redemption strategy for ``store`` at startup.

    ``preferred`` is ``auto``, ``atomic`` or ``degraded``. Asking for
    ``atomic`` on a store without scripting is a configuration error.
    """
    if preferred == RedemptionMode.DEGRADED.value:
        strategy = NonAtomicRedemption(store)
    elif store.supports_atomic_consume():
        strategy = AtomicRedemption(store)
    elif preferred == RedemptionMode.ATOMIC.value:
        raise ConfigError(["redemption_mode is atomic but the token store does not support scripting"])
    else:
        strategy = NonAtomicRedemption(store)

    if strategy.mode is RedemptionMode.DEGRADED:
        logger.warning(
            "Redemption running in DEGRADED mode: concurrent downloads of one link "
            "may exceed its download limit"
        )
    else:
        logger.info("Redemption running in atomic mode")
    return strategy


class TokenManager:
    def __init__(
        self,
        store: TokenStore,
        *,
        max_downloads: int,
        ttl_seconds: int,
        public_base_url: str,
        token_bytes: int = 32,
        strategy: RedemptionStrategy | None = None,
    ):
        if max_downloads < 1:
            raise ValueError("max_downloads must be at least 1")
        if token_bytes < 32:
            raise ValueError("token_bytes must be at least 32")
        self.store = store
        self.max_downloads = max_downloads
        self.ttl_seconds = ttl_seconds
        self.public_base_url = public_base_url.rstrip("/")
        self.token_bytes = token_bytes
        self.strategy = strategy or AtomicRedemption(store)
        self._token_re = re.compile(rf"[a-f0-9]{{{token_bytes * 2}}}")

    @classmethod
    def from_config(cls, store: TokenStore, config: dict) -> "TokenManager":
        return cls(
            store,
            max_downloads=config["max_downloads"],
            ttl_seconds=config["token_ttl"],
            public_base_url=config["public_base_url"],
            token_bytes=config["token_bytes"],
            strategy=select_strategy(store, config.get("redemption_mode", "auto")),
        )

    @property
    def mode(self) -> RedemptionMode:
        return self.strategy.mode

    def create(self, storage_reference: str) -> str:
        """Mint a token for ``storage_reference`` with the full allowance and a fresh TTL.

        The object is not checked for existence here; a bad key only surfaces
        when a redemption asks S3 for it.
        """
        if not isinstance(storage_reference, str) or not storage_reference.strip():
            raise ValidationError("storage reference is required")
        storage_reference = storage_reference.strip()

        token = secrets.token_hex(self.token_bytes)
        record = TokenRecord(
            token=token,
            storage_reference=storage_reference,
            remaining_uses=self.max_downloads,
            created_at=int(time.time() * 1000),
        )
        self.store.save(record, self.ttl_seconds)
        logger.info(
            "Created link %s for %s (ttl=%ss, max_downloads=%s)",
            token_hint(token), storage_reference, self.ttl_seconds, self.max_downloads,
        )
        return token

    def redeem(self, token: str) -> Redemption:
        """Spend one use of ``token`` and return the storage reference it unlocks.

        Raises ValidationError for a malformed token without touching the store,
        TokenNotFound for an absent or expired one, and TokenExhausted once the
        allowance is spent.
        """
        token = self.validate_token(token)
        try:
            redemption = self.strategy.redeem(token)
        except TokenExhausted:
            logger.info("Link %s exhausted", token_hint(token))
            raise
        except TokenNotFound:
            logger.info("Link %s not found or expired", token_hint(token))
            raise
        logger.info(
            "Redeemed link %s for %s (%s left)",
            token_hint(token), redemption.storage_reference, redemption.remaining_uses,
        )
        return redemption

    def inspect(self, token: str) -> LinkStatus | None:
        return self.store.inspect(self.validate_token(token))

    def validate_token(self, token) -> str:
        token = str(token or "").strip()
        if not self._token_re.fullmatch(token):
            raise ValidationError("invalid token")
        return token

    def build_link(self, token: str) -> str:
        return f"{self.public_base_url}/dl/{token}"
