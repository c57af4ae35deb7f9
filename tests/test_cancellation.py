import asyncio

import pytest

from etcd_wrapper.app.bootstrap.cancellation import CancellationToken
from etcd_wrapper.app.errors import OperationCancelledError


def test_cancel_is_idempotent_and_sticky():
    async def go():
        token = CancellationToken()
        token.cancel()
        token.cancel()
        await asyncio.wait_for(token.wait(), timeout=1)
        return token.cancelled

    assert asyncio.run(go()) is True


def test_child_follows_parent_but_not_the_other_way():
    async def go():
        parent = CancellationToken()
        child = parent.child()
        sibling = parent.child()
        child.cancel()
        assert not parent.cancelled
        assert not sibling.cancelled
        parent.cancel()
        return sibling.cancelled

    assert asyncio.run(go()) is True


def test_child_of_cancelled_parent_starts_cancelled():
    async def go():
        parent = CancellationToken()
        parent.cancel()
        return parent.child().cancelled

    assert asyncio.run(go()) is True


def test_sleep_reports_timeout_and_cancellation():
    async def go():
        token = CancellationToken()
        timed_out = await token.sleep(0.01)
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        cancelled = await token.sleep(30)
        return timed_out, cancelled

    assert asyncio.run(asyncio.wait_for(go(), timeout=5)) == (False, True)


def test_guard_returns_result_when_not_cancelled():
    async def work():
        await asyncio.sleep(0)
        return "done"

    async def go():
        return await CancellationToken().guard(work(), "work")

    assert asyncio.run(go()) == "done"


def test_guard_abandons_awaitable_on_cancel():
    finished = []

    async def slow():
        await asyncio.sleep(30)
        finished.append(True)

    async def go():
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        await token.guard(slow(), "slow work")

    with pytest.raises(OperationCancelledError, match="slow work cancelled"):
        asyncio.run(asyncio.wait_for(go(), timeout=5))
    assert finished == []
