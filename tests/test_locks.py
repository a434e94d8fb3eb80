import asyncio

import pytest

from storefront_api.services.locks import KeyedLockRegistry


@pytest.mark.asyncio
async def test_hold_serializes_same_key() -> None:
    registry = KeyedLockRegistry()
    order: list[str] = []

    async def worker(name: str) -> None:
        async with registry.hold("product:1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert registry.is_locked("product:1") is False


@pytest.mark.asyncio
async def test_overlapping_key_sets_do_not_deadlock() -> None:
    registry = KeyedLockRegistry()

    async def worker(*keys: str) -> None:
        async with registry.hold(*keys):
            await asyncio.sleep(0)

    await asyncio.wait_for(
        asyncio.gather(
            worker("product:1", "voucher:9"),
            worker("voucher:9", "product:1"),
            worker("product:1"),
        ),
        timeout=1,
    )


@pytest.mark.asyncio
async def test_idle_locks_are_forgotten() -> None:
    registry = KeyedLockRegistry()

    async with registry.hold("user:1", "user:1"):
        assert registry.is_locked("user:1") is True

    assert registry._locks == {}
