"""
Unit tests for TaskRegistry lifecycle tracking.
"""

import asyncio

import pytest

from gateway.app.task_registry import TaskRegistry


class TestTaskRegistry:
    @pytest.mark.asyncio
    async def test_completed_task_leaves_registry(self):
        registry = TaskRegistry()

        task = registry.register_task(asyncio.sleep(0), "broker_status:b1", "status")
        await task

        assert registry.list_active_tasks() == []
        assert registry.get_registry_info()["active_tasks"] == 0

    @pytest.mark.asyncio
    async def test_duplicate_names_get_suffix(self):
        registry = TaskRegistry()

        first = registry.register_task(asyncio.sleep(0.01), "broker_status:b1", "status")
        second = registry.register_task(asyncio.sleep(0.01), "broker_status:b1", "status")

        assert first.get_name() == "broker_status:b1"
        assert second.get_name().startswith("broker_status:b1_")
        await asyncio.gather(first, second)

    @pytest.mark.asyncio
    async def test_failed_task_is_cleaned_up(self):
        registry = TaskRegistry()

        async def fail():
            raise RuntimeError("store unavailable")

        task = registry.register_task(fail(), "broker_status:b1", "status")
        with pytest.raises(RuntimeError):
            await task
        await asyncio.sleep(0)

        assert registry.list_active_tasks() == []

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_tasks(self):
        registry = TaskRegistry()
        task = registry.register_task(asyncio.sleep(10), "long", "lifecycle")

        assert await registry.shutdown_all(timeout=1.0) is True

        assert task.cancelled()
        assert registry.get_registry_info()["active_tasks"] == 0

    @pytest.mark.asyncio
    async def test_registration_denied_during_shutdown(self):
        registry = TaskRegistry()
        registry._shutdown_in_progress = True

        coro = asyncio.sleep(0)
        with pytest.raises(RuntimeError):
            registry.register_task(coro, "late", "status")
