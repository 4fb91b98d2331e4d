"""Tests for spellbook.store.lock — per-key asyncio locks."""

import asyncio

from spellbook.store.lock import KeyedLock


class TestKeyedLock:
    def test_same_key_same_lock(self):
        locks = KeyedLock()
        assert locks.get("a") is locks.get("a")
        assert locks.get("a") is not locks.get("b")

    def test_discard_idle_key(self):
        locks = KeyedLock()

        async def scenario():
            async with locks.acquire("a"):
                pass

        asyncio.run(scenario())
        assert not locks.in_use("a")
        locks.discard("a")
        assert len(locks) == 0

    def test_discard_keeps_lock_while_a_waiter_is_queued(self):
        async def scenario():
            locks = KeyedLock()
            release = asyncio.Event()
            seen = []

            async def holder():
                async with locks.acquire("k"):
                    await release.wait()
                locks.discard("k")
                return len(locks)

            async def waiter():
                async with locks.acquire("k"):
                    seen.append(locks.get("k"))

            held = asyncio.create_task(holder())
            await asyncio.sleep(0)
            original = locks.get("k")
            queued = asyncio.create_task(waiter())
            await asyncio.sleep(0)
            assert locks.in_use("k")

            release.set()
            kept = await held
            await queued
            return original, kept, seen, locks

        original, kept, seen, locks = asyncio.run(scenario())
        assert kept == 1
        assert seen == [original]
        assert not locks.in_use("k")
