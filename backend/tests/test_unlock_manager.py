"""Tests for UnlockManager against in-memory ports."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from backend.api.services.achievement_engine import MetricsCalculator, RevokePolicy, UnlockManager
from backend.tests.fakes import (
    TODAY,
    FakeBalance,
    FakeLedger,
    FakeStore,
    automatic,
    make_manager,
    manual,
)
from vcoin.achievements import UnlockSource

CAT_A = 1
CAT_B = 2


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


class TestProcessStudent:
    @pytest.mark.asyncio
    async def test_idempotent(self, store: FakeStore, ledger: FakeLedger) -> None:
        """A second evaluation with unchanged data unlocks nothing and keeps one row."""
        store.define(automatic(1, "investment_count", 1))
        ledger.add(7, TODAY)
        manager = make_manager(store, ledger)

        first = await manager.process_student(7)
        second = await manager.process_student(7)

        assert [a.id for a in first] == [1]
        assert second == []
        assert list(store.unlocks) == [(7, 1)]

    @pytest.mark.asyncio
    async def test_unlock_metadata(self, store: FakeStore, ledger: FakeLedger) -> None:
        store.define(automatic(1, "investment_count", 1))
        ledger.add(7, TODAY)
        manager = make_manager(store, ledger)

        await manager.process_student(7, UnlockSource.INVESTMENT, investment_id=55)

        metadata = store.unlocks[(7, 1)]
        assert metadata["source"] == "investment"
        assert metadata["metric"] == "investment_count"
        assert metadata["trigger_value"] == 1
        assert metadata["investment_id"] == 55
        assert "timestamp" in metadata

    @pytest.mark.asyncio
    async def test_batch_metadata_has_no_investment_id(
        self, store: FakeStore, ledger: FakeLedger
    ) -> None:
        store.define(automatic(1, "investment_count", 1))
        ledger.add(7, TODAY)

        await make_manager(store, ledger).process_student(7)

        assert store.unlocks[(7, 1)]["source"] == "scheduled_batch"
        assert "investment_id" not in store.unlocks[(7, 1)]

    @pytest.mark.asyncio
    async def test_never_unlocks_manual(self, store: FakeStore, ledger: FakeLedger) -> None:
        store.define(manual(9))
        ledger.add(7, TODAY)

        unlocked = await make_manager(store, ledger).process_student(7)

        assert unlocked == []
        assert store.unlocks == {}
        assert store.progress == {}

    @pytest.mark.asyncio
    async def test_no_achievements_skips_metrics(
        self, store: FakeStore, ledger: FakeLedger
    ) -> None:
        balance = FakeBalance()
        ledger.add(7, TODAY)

        assert await make_manager(store, ledger, balance).process_student(7) == []
        assert balance.calls == 0

    @pytest.mark.asyncio
    async def test_progress_independent_of_unlock(
        self, store: FakeStore, ledger: FakeLedger
    ) -> None:
        store.define(
            automatic(1, "investment_count", 2),
            automatic(2, "investment_count", 10),
            automatic(3, "total_invested", 1000),
        )
        ledger.add(7, TODAY - timedelta(days=1), amount=100.0)
        ledger.add(7, TODAY, amount=150.0)

        unlocked = await make_manager(store, ledger, FakeBalance(bonus=5.0)).process_student(7)

        assert [a.id for a in unlocked] == [1]
        assert store.progress == {(7, 1): 2, (7, 2): 2, (7, 3): 255.0}

    @pytest.mark.asyncio
    async def test_progress_updated_after_unlock(
        self, store: FakeStore, ledger: FakeLedger
    ) -> None:
        store.define(automatic(1, "investment_count", 1))
        ledger.add(7, TODAY)
        manager = make_manager(store, ledger)
        await manager.process_student(7)

        ledger.add(7, TODAY)
        await manager.process_student(7)

        assert store.progress[(7, 1)] == 2

    @pytest.mark.asyncio
    async def test_category_scoping(self, store: FakeStore, ledger: FakeLedger) -> None:
        store.define(
            automatic(1, "investment_count", 2, category_id=7),
            automatic(2, "investment_count", 3),
            automatic(3, "investment_count", 3, category_id=7),
        )
        ledger.add(5, TODAY, category_id=7)
        ledger.add(5, TODAY, category_id=7)
        ledger.add(5, TODAY, category_id=8)

        unlocked = await make_manager(store, ledger).process_student(5)

        assert sorted(a.id for a in unlocked) == [1, 2]
        assert store.progress[(5, 3)] == 2

    @pytest.mark.asyncio
    async def test_malformed_config_never_unlocks(
        self, store: FakeStore, ledger: FakeLedger
    ) -> None:
        store.define(automatic(1, "investment_count", 1, operator="!="))
        ledger.add(7, TODAY)

        assert await make_manager(store, ledger).process_student(7) == []
        assert store.progress[(7, 1)] == 1

    @pytest.mark.asyncio
    async def test_errors_propagate(self, store: FakeStore, ledger: FakeLedger) -> None:
        store.define(automatic(1, "investment_count", 1))
        ledger.failing.add(7)

        with pytest.raises(RuntimeError):
            await make_manager(store, ledger).process_student(7)

    @pytest.mark.asyncio
    async def test_check_safely_swallows_errors(
        self, store: FakeStore, ledger: FakeLedger
    ) -> None:
        store.define(automatic(1, "investment_count", 1))
        ledger.failing.add(7)

        assert await make_manager(store, ledger).check_student_safely(7) == []

    @pytest.mark.asyncio
    async def test_check_safely_discards_partial_writes(
        self, store: FakeStore, ledger: FakeLedger
    ) -> None:
        store.define(automatic(1, "investment_count", 1))
        ledger.add(7, TODAY)

        @asynccontextmanager
        async def _savepoint() -> AsyncIterator[None]:
            snapshot = dict(store.unlocks)
            try:
                yield
            except Exception:
                store.unlocks = snapshot
                raise

        async def _broken_progress(*args: object) -> None:
            raise RuntimeError("progress write failed")

        store.upsert_progress = _broken_progress  # type: ignore[method-assign]
        metrics = MetricsCalculator(ledger, FakeBalance(), today=lambda: TODAY)
        manager = UnlockManager(store, metrics, savepoint=_savepoint)

        assert await manager.check_student_safely(7) == []
        assert store.insert_attempts == 1
        assert store.unlocks == {}


class TestInspectStudent:
    @pytest.mark.asyncio
    async def test_reports_metrics_and_verdicts(
        self, store: FakeStore, ledger: FakeLedger
    ) -> None:
        store.define(
            automatic(1, "investment_count", 1),
            automatic(2, "investment_count", 5),
            manual(9),
        )
        ledger.add(7, TODAY, amount=20.0, category_id=CAT_A)
        ledger.add(7, TODAY, amount=5.0)
        manager = make_manager(store, ledger)
        await manager.process_student(7)
        store.progress.clear()

        metrics, verdicts = await manager.inspect_student(7)

        assert metrics["investment_count"] == 2
        assert metrics[f"category_{CAT_A}_count"] == 1
        assert metrics["total_invested"] == 25.0
        assert [(a.id, e.holds, e.current_value, unlocked) for a, e, unlocked in verdicts] == [
            (1, True, 2, True),
            (2, False, 2, False),
        ]
        assert store.progress == {}
        assert list(store.unlocks) == [(7, 1)]


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_three_investments_scenario(
        self, store: FakeStore, ledger: FakeLedger
    ) -> None:
        store.define(
            automatic(1, "investment_count", 3),
            automatic(2, "investment_count", 2, category_id=CAT_A),
            automatic(3, "streak_days", 3),
        )
        ledger.add(1, TODAY - timedelta(days=2), amount=10.0, category_id=CAT_A)
        ledger.add(1, TODAY - timedelta(days=1), amount=15.0, category_id=CAT_A)
        ledger.add(1, TODAY, amount=5.0, category_id=CAT_B)
        manager = make_manager(store, ledger)

        first = await manager.process_student(1)
        second = await manager.process_student(1)

        assert sorted(a.id for a in first) == [1, 2, 3]
        assert second == []
        assert sorted(store.unlocks) == [(1, 1), (1, 2), (1, 3)]


class TestManualUnlock:
    @pytest.mark.asyncio
    async def test_awards_manual(self, store: FakeStore, ledger: FakeLedger) -> None:
        store.define(manual(9))

        awarded = await make_manager(store, ledger).unlock_manual(3, 9, admin_id="t-1")

        assert awarded is not None and awarded.id == 9
        assert store.unlocks[(3, 9)]["source"] == "manual"
        assert store.unlocks[(3, 9)]["admin_id"] == "t-1"

    @pytest.mark.asyncio
    async def test_twice_keeps_one_row(self, store: FakeStore, ledger: FakeLedger) -> None:
        store.define(manual(9))
        manager = make_manager(store, ledger)

        assert await manager.unlock_manual(3, 9, admin_id="t-1") is not None
        assert await manager.unlock_manual(3, 9, admin_id="t-2") is not None

        assert len(store.unlocks) == 1
        assert store.unlocks[(3, 9)]["admin_id"] == "t-1"

    @pytest.mark.asyncio
    async def test_refuses_automatic(self, store: FakeStore, ledger: FakeLedger) -> None:
        store.define(automatic(1, "investment_count", 1))

        assert await make_manager(store, ledger).unlock_manual(3, 1) is None
        assert store.unlocks == {}
        assert store.insert_attempts == 0

    @pytest.mark.asyncio
    async def test_missing_achievement(self, store: FakeStore, ledger: FakeLedger) -> None:
        assert await make_manager(store, ledger).unlock_manual(3, 404) is None


class TestRevoke:
    @pytest.mark.asyncio
    async def test_allow_regrant(self, store: FakeStore, ledger: FakeLedger) -> None:
        """With the default policy a revoked automatic badge comes back next pass."""
        store.define(automatic(1, "investment_count", 1))
        ledger.add(7, TODAY)
        manager = make_manager(store, ledger)
        await manager.process_student(7)

        assert await manager.revoke(7, 1, admin_id="t-1") is True
        assert store.revocations == {}

        again = await manager.process_student(7)
        assert [a.id for a in again] == [1]

    @pytest.mark.asyncio
    async def test_suppress_regrant(self, store: FakeStore, ledger: FakeLedger) -> None:
        store.define(automatic(1, "investment_count", 1))
        ledger.add(7, TODAY)
        manager = make_manager(store, ledger, revoke_policy=RevokePolicy.SUPPRESS_REGRANT)
        await manager.process_student(7)

        await manager.revoke(7, 1, admin_id="t-1")

        assert store.revocations == {(7, 1): "t-1"}
        assert await manager.process_student(7) == []
        assert (7, 1) not in store.unlocks
        assert store.progress[(7, 1)] == 1

        assert await manager.clear_revocation(7, 1) is True
        assert [a.id for a in await manager.process_student(7)] == [1]

    @pytest.mark.asyncio
    async def test_per_call_override(self, store: FakeStore, ledger: FakeLedger) -> None:
        store.define(automatic(1, "investment_count", 1))
        ledger.add(7, TODAY)
        manager = make_manager(store, ledger, revoke_policy=RevokePolicy.SUPPRESS_REGRANT)
        await manager.process_student(7)

        await manager.revoke(7, 1, suppress_regrant=False)

        assert store.revocations == {}

    @pytest.mark.asyncio
    async def test_per_call_suppression_under_default_policy(
        self, store: FakeStore, ledger: FakeLedger
    ) -> None:
        store.define(automatic(1, "investment_count", 1))
        ledger.add(7, TODAY)
        manager = make_manager(store, ledger)
        await manager.process_student(7)

        await manager.revoke(7, 1, admin_id="t-1", suppress_regrant=True)

        assert store.revocations == {(7, 1): "t-1"}
        assert await manager.process_student(7) == []
        assert (7, 1) not in store.unlocks

        assert await manager.clear_revocation(7, 1) is True
        assert [a.id for a in await manager.process_student(7)] == [1]

    @pytest.mark.asyncio
    async def test_revoke_manual_and_reaward(self, store: FakeStore, ledger: FakeLedger) -> None:
        store.define(manual(9))
        manager = make_manager(store, ledger, revoke_policy=RevokePolicy.SUPPRESS_REGRANT)
        await manager.unlock_manual(3, 9, admin_id="t-1")

        assert await manager.revoke(3, 9) is True
        assert (3, 9) in store.revocations

        await manager.unlock_manual(3, 9, admin_id="t-1")
        assert (3, 9) in store.unlocks
        assert store.revocations == {}

    @pytest.mark.asyncio
    async def test_revoke_missing_row(self, store: FakeStore, ledger: FakeLedger) -> None:
        assert await make_manager(store, ledger).revoke(3, 9) is False
