import asyncio

from common.db.context import (
    get_current_session,
    in_transaction,
    reset_current_session,
    set_current_session,
)


class TestContextVariables:
    """Test context variable behavior."""

    def test_default_state(self):
        assert get_current_session() is None
        assert in_transaction() is False

    def test_set_and_reset(self, test_db):
        token = set_current_session(test_db)
        assert get_current_session() is test_db
        assert in_transaction() is True

        reset_current_session(token)
        assert get_current_session() is None


class TestContextIsolation:
    """Context variables are isolated between concurrent async tasks."""

    async def test_concurrent_tasks_have_isolated_contexts(self, test_db):
        results = {}

        async def task_with_session(task_id: str, delay: float):
            token = set_current_session(test_db)
            await asyncio.sleep(delay)
            results[task_id] = get_current_session() is test_db
            reset_current_session(token)

        async def task_without_session(task_id: str):
            await asyncio.sleep(0.01)
            results[task_id] = get_current_session() is None

        await asyncio.gather(
            task_with_session("with1", 0.01),
            task_with_session("with2", 0.005),
            task_without_session("without"),
        )

        assert results == {"with1": True, "with2": True, "without": True}

    async def test_child_task_inherits_context(self, test_db):
        token = set_current_session(test_db)
        try:
            seen = await asyncio.create_task(self._current())
        finally:
            reset_current_session(token)

        assert seen is test_db

    @staticmethod
    async def _current():
        return get_current_session()
