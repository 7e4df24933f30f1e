import asyncio
import pytest
import sys
import os
from decimal import Decimal

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from tier_matrix.config.settings import reset_settings
from tier_matrix.engine.edit_session import LocalEditSession
from tier_matrix.engine.price_editor import DebouncedPriceEditor
from tier_matrix.services.tier_store import InMemoryTierStore, TierStoreError

SERVICE = 1
DELAY = 0.05


class RecordingStore(InMemoryTierStore):
    """In-memory store that can be told to fail tier writes."""

    def __init__(self):
        super().__init__()
        self.fail = False
        self.sent_prices = []

    async def update_tier(self, service_id, variant_id, tier_id, min_quantity=None, price=None, is_active=None):
        if self.fail:
            raise TierStoreError("write rejected")
        self.sent_prices.append(price)
        return await super().update_tier(service_id, variant_id, tier_id, min_quantity, price, is_active)

    async def create_tier(self, service_id, variant_id, min_quantity, price, is_active=True):
        if self.fail:
            raise TierStoreError("write rejected")
        self.sent_prices.append(price)
        return await super().create_tier(service_id, variant_id, min_quantity, price, is_active)


async def setup():
    store = RecordingStore()
    v = await store.create_variant(SERVICE, "Cards")
    await store.create_tier(SERVICE, v.id, 1, "10")
    await store.create_tier(SERVICE, v.id, 50, "8")
    store.sent_prices.clear()
    store.call_log.clear()
    session = await LocalEditSession.open(store, SERVICE)
    store.call_log.clear()
    return store, session, v.id


def test_burst_sends_only_the_last_value():
    async def scenario():
        store, session, vid = await setup()
        editor = DebouncedPriceEditor(session, delay=DELAY)
        for value in ("7", "7.5", "7.25"):
            editor.edit(vid, 50, value)
            assert session.get_price(vid, 50) == Decimal(value)
            await asyncio.sleep(DELAY / 5)
        assert store.call_log == []
        await asyncio.sleep(DELAY * 3)
        return store, session, editor, vid

    store, session, editor, vid = asyncio.run(scenario())
    assert store.call_log == ["update_tier"]
    assert store.sent_prices == [Decimal("7.25")]
    assert session.baseline[vid].tier_at(50).price == Decimal("7.25")
    assert session.price_changes == []
    assert editor.errors == []


def test_different_cells_are_independent():
    async def scenario():
        store, session, vid = await setup()
        editor = DebouncedPriceEditor(session, delay=DELAY)
        editor.edit(vid, 1, "9")
        editor.edit(vid, 50, "6")
        assert editor.pending == {(vid, 1), (vid, 50)}
        await asyncio.sleep(DELAY * 3)
        return store

    store = asyncio.run(scenario())
    assert sorted(store.sent_prices) == [Decimal("6"), Decimal("9")]


def test_new_cell_is_created_and_keeps_its_id():
    async def scenario():
        store, session, vid = await setup()
        editor = DebouncedPriceEditor(session, delay=DELAY)
        editor.edit(vid, 200, "5")
        await asyncio.sleep(DELAY * 3)
        return store, session, vid

    store, session, vid = asyncio.run(scenario())
    assert store.call_log == ["create_tier"]
    assert session.get_variant(vid).tier_at(200).id is not None
    assert not session.has_unsaved_changes


def test_failure_rolls_back_to_value_before_burst():
    errors = []

    async def scenario():
        store, session, vid = await setup()
        store.fail = True
        editor = DebouncedPriceEditor(session, delay=DELAY, on_error=errors.append)
        editor.edit(vid, 50, "6")
        editor.edit(vid, 50, "5")
        await asyncio.sleep(DELAY * 3)
        return session, editor, vid

    session, editor, vid = asyncio.run(scenario())
    assert session.get_price(vid, 50) == Decimal("8")
    assert session.price_changes == []
    assert len(errors) == 1
    assert errors[0].min_qty == 50
    assert "write rejected" in errors[0].error
    assert editor.errors == errors


class ResetStore(RecordingStore):
    """Store whose connection drops mid-write with a non-store exception."""

    async def update_tier(self, service_id, variant_id, tier_id, min_quantity=None, price=None, is_active=None):
        raise RuntimeError("connection reset")


def test_unexpected_store_exception_rolls_back():
    errors = []

    async def scenario():
        store = ResetStore()
        v = await store.create_variant(SERVICE, "Cards")
        await store.create_tier(SERVICE, v.id, 1, "10")
        session = await LocalEditSession.open(store, SERVICE)
        editor = DebouncedPriceEditor(session, delay=DELAY, on_error=errors.append)
        editor.edit(v.id, 1, "3")
        await asyncio.sleep(DELAY * 3)
        return session, editor, v.id

    session, editor, vid = asyncio.run(scenario())
    assert session.get_price(vid, 1) == Decimal("10")
    assert session.price_changes == []
    assert [e.error for e in editor.errors] == ["connection reset"]
    assert editor.errors == errors


@pytest.mark.parametrize("value", ["NaN", "Infinity", "-3"])
def test_non_finite_or_negative_edit_rejected(value):
    async def scenario():
        store, session, vid = await setup()
        editor = DebouncedPriceEditor(session, delay=DELAY)
        with pytest.raises(ValueError):
            editor.edit(vid, 50, value)
        return session, editor, vid

    session, editor, vid = asyncio.run(scenario())
    assert session.get_price(vid, 50) == Decimal("8")
    assert editor.pending == set()


def test_default_delay_comes_from_settings(monkeypatch):
    monkeypatch.setenv("TIER_MATRIX_PRICE_DEBOUNCE_SECONDS", "0.25")
    reset_settings()
    try:
        async def scenario():
            _, session, _ = await setup()
            return DebouncedPriceEditor(session)

        assert asyncio.run(scenario()).delay == 0.25
    finally:
        reset_settings()


def test_failed_new_cell_is_removed_again():
    async def scenario():
        store, session, vid = await setup()
        store.fail = True
        editor = DebouncedPriceEditor(session, delay=DELAY)
        editor.edit(vid, 200, "5")
        await asyncio.sleep(DELAY * 3)
        return session, vid

    session, vid = asyncio.run(scenario())
    assert session.get_variant(vid).min_quantities() == [1, 50]


def test_flush_pending_sends_immediately():
    async def scenario():
        store, session, vid = await setup()
        editor = DebouncedPriceEditor(session, delay=60)
        editor.edit(vid, 1, "9.5")
        await editor.flush_pending()
        return store, editor

    store, editor = asyncio.run(scenario())
    assert store.sent_prices == [Decimal("9.5")]
    assert editor.pending == set()


def test_cancel_all_keeps_local_edit_for_session_flush():
    async def scenario():
        store, session, vid = await setup()
        editor = DebouncedPriceEditor(session, delay=DELAY)
        editor.edit(vid, 1, "4")
        editor.cancel_all()
        await asyncio.sleep(DELAY * 3)
        sent_before_flush = list(store.sent_prices)
        report = await session.flush()
        return store, sent_before_flush, report

    store, sent_before_flush, report = asyncio.run(scenario())
    assert sent_before_flush == []
    assert report.ok
    assert store.sent_prices == [Decimal("4")]


def test_unsaved_variant_cells_wait_for_session_flush():
    async def scenario():
        store, session, _ = await setup()
        editor = DebouncedPriceEditor(session, delay=DELAY)
        local = session.create_variant("Flyers")
        assert editor.edit(local.id, 1, "3")
        assert editor.pending == set()
        await asyncio.sleep(DELAY * 3)
        return store, session, local.id

    store, session, local_id = asyncio.run(scenario())
    assert store.call_log == []
    assert session.get_price(local_id, 1) == Decimal("3")
