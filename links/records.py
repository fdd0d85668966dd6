from dataclasses import dataclass

KEY_PREFIX = "download:"


def record_key(token: str) -> str:
    return f"{KEY_PREFIX}{token}"


def token_hint(token: str) -> str:
    """Short form of a token that is safe to write to logs."""
    return f"{token[:8]}…"


@dataclass(frozen=True)
class TokenRecord:
    token: str
    storage_reference: str
    remaining_uses: int
    created_at: int  # epoch milliseconds, informational only


@dataclass(frozen=True)
class Redemption:
    token: str
    storage_reference: str
    remaining_uses: int


@dataclass(frozen=True)
class LinkStatus:
    record: TokenRecord
    expires_in: int | None  # seconds until the store drops the record

    @property
    def exhausted(self) -> bool:
        return self.record.remaining_uses <= 0
