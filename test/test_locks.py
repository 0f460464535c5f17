"""
Tests for per-key asyncio locks
"""

import asyncio

from geotrack.utils.locks import KeyedLocks


class TestKeyedLocks:
    def test_same_key_same_lock(self):
        locks = KeyedLocks()
        assert locks.get(7) is locks.get(7)
        assert len(locks) == 1

    def test_different_keys_different_locks(self):
        locks = KeyedLocks()
        assert locks.get(7) is not locks.get(8)
        assert len(locks) == 2

    async def test_released_lock_is_kept_for_reuse(self):
        locks = KeyedLocks()
        first = locks.get("alice")
        async with first:
            pass

        assert locks.get("alice") is first
        assert len(locks) == 1

    async def test_other_keys_do_not_wait(self):
        locks = KeyedLocks()
        order = []

        async def hold(key, delay):
            async with locks.get(key):
                await asyncio.sleep(delay)
                order.append(key)

        await asyncio.gather(hold("slow", 0.05), hold("fast", 0))

        assert order == ["fast", "slow"]
