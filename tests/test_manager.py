import logging
import re
from unittest.mock import MagicMock

import pytest

from config import ConfigError
from links.errors import TokenExhausted, TokenNotFound, ValidationError
from links.manager import (
    AtomicRedemption,
    NonAtomicRedemption,
    RedemptionMode,
    TokenManager,
    select_strategy,
)
from links.token_store import InMemoryTokenStore, TokenStore


@pytest.fixture
def store(clock):
    return InMemoryTokenStore(clock=clock)


@pytest.fixture
def manager(store):
    return TokenManager(
        store,
        max_downloads=3,
        ttl_seconds=1800,
        public_base_url="https://dl.example.com/",
    )


@pytest.fixture
def spy_store():
    return MagicMock(spec=InMemoryTokenStore)


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------

def test_create_returns_64_char_lowercase_hex(manager):
    token = manager.create("files/report.pdf")
    assert re.fullmatch(r"[a-f0-9]{64}", token)


def test_create_writes_full_allowance(manager):
    token = manager.create("files/report.pdf")

    status = manager.inspect(token)
    assert status.record.storage_reference == "files/report.pdf"
    assert status.record.remaining_uses == 3
    assert status.expires_in == 1800


def test_create_passes_ttl_to_store(spy_store):
    manager = TokenManager(spy_store, max_downloads=2, ttl_seconds=600, public_base_url="https://x")
    token = manager.create("a.pdf")

    record, ttl = spy_store.save.call_args[0]
    assert record.token == token
    assert record.remaining_uses == 2
    assert ttl == 600


def test_create_strips_whitespace_from_reference(manager):
    token = manager.create("  files/report.pdf \n")
    assert manager.inspect(token).record.storage_reference == "files/report.pdf"


def test_tokens_are_unique(manager):
    tokens = {manager.create("files/report.pdf") for _ in range(50)}
    assert len(tokens) == 50


@pytest.mark.parametrize("reference", ["", "   ", None])
def test_create_rejects_empty_reference(spy_store, reference):
    manager = TokenManager(spy_store, max_downloads=3, ttl_seconds=60, public_base_url="https://x")
    with pytest.raises(ValidationError):
        manager.create(reference)
    spy_store.save.assert_not_called()


def test_build_link_uses_base_url(manager):
    assert manager.build_link("ab" * 32) == "https://dl.example.com/dl/" + "ab" * 32


def test_constructor_rejects_zero_allowance(store):
    with pytest.raises(ValueError):
        TokenManager(store, max_downloads=0, ttl_seconds=60, public_base_url="https://x")


def test_constructor_rejects_short_tokens(store):
    with pytest.raises(ValueError):
        TokenManager(store, max_downloads=1, ttl_seconds=60, public_base_url="https://x", token_bytes=16)


# ---------------------------------------------------------------------------
# redeem
# ---------------------------------------------------------------------------

def test_redeem_sequence_counts_down_then_exhausts(manager):
    token = manager.create("files/report.pdf")

    remaining = []
    for _ in range(3):
        redemption = manager.redeem(token)
        assert redemption.storage_reference == "files/report.pdf"
        remaining.append(redemption.remaining_uses)

    assert remaining == [2, 1, 0]
    with pytest.raises(TokenExhausted):
        manager.redeem(token)


def test_redeem_unknown_token_is_not_found(manager):
    with pytest.raises(TokenNotFound):
        manager.redeem("0123456789abcdef" * 4)


def test_redeem_after_ttl_is_not_found_even_with_uses_left(manager, clock):
    token = manager.create("files/report.pdf")
    manager.redeem(token)

    clock.advance(1800)

    with pytest.raises(TokenNotFound):
        manager.redeem(token)


def test_exhausted_token_stays_exhausted_until_ttl(manager, clock):
    token = manager.create("files/report.pdf")
    for _ in range(3):
        manager.redeem(token)

    clock.advance(1799)
    with pytest.raises(TokenExhausted):
        manager.redeem(token)

    clock.advance(1)
    with pytest.raises(TokenNotFound):
        manager.redeem(token)


@pytest.mark.parametrize("token", [
    "",
    None,
    "abc",
    "A" * 64,
    "g" * 64,
    "a" * 63,
    "a" * 65,
    "../" + "a" * 61,
    "a" * 63 + "\x00",
])
def test_malformed_token_rejected_without_store_access(spy_store, token):
    manager = TokenManager(spy_store, max_downloads=3, ttl_seconds=60, public_base_url="https://x")
    with pytest.raises(ValidationError):
        manager.redeem(token)
    assert spy_store.method_calls == []


def test_redeem_tolerates_surrounding_whitespace(manager):
    token = manager.create("files/report.pdf")
    assert manager.redeem(f"  {token}\n").storage_reference == "files/report.pdf"


def test_wider_tokens_change_expected_format(store):
    manager = TokenManager(store, max_downloads=1, ttl_seconds=60, public_base_url="https://x", token_bytes=48)
    token = manager.create("a.pdf")

    assert len(token) == 96
    assert manager.redeem(token).remaining_uses == 0
    with pytest.raises(ValidationError):
        manager.redeem("ab" * 32)


def test_inspect_validates_token(manager):
    with pytest.raises(ValidationError):
        manager.inspect("not-a-token")


# ---------------------------------------------------------------------------
# strategies
# ---------------------------------------------------------------------------

def test_default_strategy_is_atomic(manager):
    assert manager.mode is RedemptionMode.ATOMIC


def test_non_atomic_redemption_follows_decision_table(store):
    manager = TokenManager(
        store,
        max_downloads=2,
        ttl_seconds=60,
        public_base_url="https://x",
        strategy=NonAtomicRedemption(store),
    )
    token = manager.create("files/report.pdf")

    assert manager.mode is RedemptionMode.DEGRADED
    assert manager.redeem(token).remaining_uses == 1
    assert manager.redeem(token).remaining_uses == 0
    with pytest.raises(TokenExhausted):
        manager.redeem(token)
    with pytest.raises(TokenNotFound):
        manager.redeem("cd" * 32)


def test_non_atomic_redemption_never_calls_consume(spy_store):
    spy_store.exists.return_value = True
    spy_store.remaining_uses.return_value = 1
    spy_store.decrement.return_value = 0
    spy_store.storage_reference.return_value = "files/report.pdf"

    redemption = NonAtomicRedemption(spy_store).redeem("ab" * 32)

    assert redemption.remaining_uses == 0
    spy_store.consume.assert_not_called()


def test_non_atomic_missing_mapping_is_not_found(spy_store):
    spy_store.exists.return_value = True
    spy_store.remaining_uses.return_value = 1
    spy_store.decrement.return_value = 0
    spy_store.storage_reference.return_value = None

    with pytest.raises(TokenNotFound):
        NonAtomicRedemption(spy_store).redeem("ab" * 32)


def test_select_strategy_prefers_atomic(store):
    strategy = select_strategy(store)
    assert isinstance(strategy, AtomicRedemption)


def test_select_strategy_falls_back_with_warning(caplog):
    store = MagicMock(spec=TokenStore)
    store.supports_atomic_consume.return_value = False

    with caplog.at_level(logging.WARNING, logger="links.manager"):
        strategy = select_strategy(store, "auto")

    assert isinstance(strategy, NonAtomicRedemption)
    assert "DEGRADED" in caplog.text


def test_select_strategy_honours_pinned_degraded_mode():
    store = MagicMock(spec=TokenStore)
    strategy = select_strategy(store, "degraded")

    assert strategy.mode is RedemptionMode.DEGRADED
    store.supports_atomic_consume.assert_not_called()


def test_select_strategy_atomic_without_scripting_is_config_error():
    store = MagicMock(spec=TokenStore)
    store.supports_atomic_consume.return_value = False

    with pytest.raises(ConfigError):
        select_strategy(store, "atomic")


def test_from_config(store):
    config = {
        "max_downloads": 5,
        "token_ttl": 900,
        "public_base_url": "https://dl.example.com",
        "token_bytes": 32,
        "redemption_mode": "auto",
    }
    manager = TokenManager.from_config(store, config)

    assert manager.max_downloads == 5
    assert manager.ttl_seconds == 900
    assert manager.mode is RedemptionMode.ATOMIC
