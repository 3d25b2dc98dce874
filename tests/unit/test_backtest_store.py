import pytest

from tradesim.backtest.store import BacktestStore


def _document(backtest_id, status="PENDING", user_id="user-1", portfolio_id="pf-1", created_at="2024-01-08T10:00:00"):
    return {
        "id": backtest_id,
        "user_id": user_id,
        "name": f"run {backtest_id}",
        "status": status,
        "error": None,
        "start_date": "2024-01-08",
        "end_date": "2024-01-13",
        "statistics": {"percent_change": 1.0},
        "ledger": {"portfolio_id": portfolio_id, "value_history": [{"timestamp": "2024-01-08T09:30:00", "value": 1}]},
        "successful_buy_history": [],
        "created_at": created_at,
        "updated_at": created_at,
    }


@pytest.fixture
async def store(tmp_path):
    s = BacktestStore(str(tmp_path / "backtests.db"))
    await s.initialize()
    yield s
    await s.close()


class TestBacktestStore:
    async def test_save_and_find(self, store):
        """Saved documents come back unchanged."""
        doc = _document("bt-1")
        assert await store.save(doc) == "bt-1"
        assert await store.find_one("bt-1") == doc
        assert await store.find_one("bt-1", "user-1") == doc

    async def test_find_filters_user(self, store):
        """Lookups are scoped to the user."""
        await store.save(_document("bt-1"))
        assert await store.find_one("bt-1", "user-2") is None
        assert await store.find_one("missing") is None

    async def test_save_replaces_document(self, store):
        """Saving an existing id replaces it."""
        await store.save(_document("bt-1"))
        await store.save(_document("bt-1", status="COMPLETE"))
        assert (await store.find_one("bt-1"))["status"] == "COMPLETE"
        assert len(await store.find_summaries()) == 1

    async def test_summaries_newest_first(self, store):
        """Summaries are newest first and leave out history."""
        await store.save(_document("old", created_at="2024-01-08T10:00:00"))
        await store.save(_document("new", created_at="2024-01-09T10:00:00"))
        await store.save(_document("other", portfolio_id="pf-2", created_at="2024-01-10T10:00:00"))

        summaries = await store.find_summaries("pf-1", "user-1")
        assert [s["id"] for s in summaries] == ["new", "old"]
        assert set(summaries[0]) == {
            "id", "name", "status", "error", "start_date", "end_date", "statistics", "created_at", "updated_at",
        }
        assert len(await store.find_summaries(limit=2)) == 2
        assert [s["id"] for s in await store.find_summaries(user_id="user-1")] == ["other", "new", "old"]
