import asyncio

import pytest

from declsync._cogs.aiokits.aiolimiters import ItemExponentialLimiter
from declsync._cogs.structs.bodies import Body
from declsync._core.reactor.queueing import ObjectQueue, QueueShutDown


def make(name='cm', generation=None, version='v1', rv='1', data=None):
    meta = {'name': name, 'namespace': 'ns', 'resourceVersion': rv}
    if generation is not None:
        meta['generation'] = generation
    raw = {'apiVersion': f'declsync.dev/{version}', 'kind': 'Sample', 'metadata': meta}
    if data is not None:
        raw['data'] = data
    return Body(raw)


@pytest.fixture()
def queue():
    return ObjectQueue(limiter=ItemExponentialLimiter(base_delay=0.01, max_delay=0.1))


async def test_repeated_adds_keep_only_the_latest(queue):
    for i in range(10):
        queue.add(make(rv=str(i), generation=1))
    assert len(queue) == 1
    obj = await queue.get()
    assert obj.resource_version == '9'


async def test_older_generations_are_ignored(queue):
    queue.add(make(rv='2', generation=2))
    queue.add(make(rv='1', generation=1))
    obj = await queue.get()
    assert obj.generation == 2


async def test_equal_generations_are_accepted(queue):
    queue.add(make(rv='1', generation=2, data={'a': '1'}))
    queue.add(make(rv='2', generation=2, data={'a': '2'}))
    obj = await queue.get()
    assert obj['data'] == {'a': '2'}


async def test_absent_generations_are_zeros(queue):
    queue.add(make(rv='1', generation=1))
    queue.add(make(rv='2', generation=None))
    obj = await queue.get()
    assert obj.resource_version == '1'


async def test_versions_are_queued_separately(queue):
    queue.add(make(version='v1'))
    queue.add(make(version='v2'))
    assert len(queue) == 2


async def test_done_removes_the_object(queue):
    queue.add(make())
    obj = await queue.get()
    queue.done(obj)
    assert len(queue) == 0
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(queue.get(), timeout=0.05)


async def test_added_while_processing_is_kept(queue):
    queue.add(make(rv='1', generation=1))
    obj1 = await queue.get()
    queue.add(make(rv='2', generation=2))
    assert len(queue) == 0  # not given to other workers while being processed

    queue.done(obj1)
    assert len(queue) == 1
    obj2 = await queue.get()
    assert obj2.generation == 2

    queue.done(obj2)
    assert len(queue) == 0


async def test_retry_reuses_the_object(queue):
    queue.add(make(rv='1'))
    obj = await queue.get()
    queue.retry(obj)
    queue.done(obj)
    assert queue.num_requeues(obj) == 1
    retried = await asyncio.wait_for(queue.get(), timeout=1)
    assert retried.resource_version == '1'


async def test_forget_resets_the_backoff(queue):
    queue.add(make())
    obj = await queue.get()
    queue.retry(obj)
    queue.forget(obj)
    assert queue.num_requeues(obj) == 0


async def test_shutdown(queue):
    queue.add(make())
    queue.shutdown()
    await queue.get()
    with pytest.raises(QueueShutDown):
        await queue.get()


async def test_tombstones_replace_the_live_objects(queue):
    queue.add(make(rv='1', generation=1))
    queue.add(make(rv='2', generation=1).as_tombstone())
    obj = await queue.get()
    assert obj.deleted


async def test_replacing_while_processing_waits_for_the_retry():
    queue = ObjectQueue(limiter=ItemExponentialLimiter(base_delay=1.0, max_delay=10.0))
    queue.add(make(rv='1'))
    obj = await queue.get()
    queue.replace(make(rv='2'))
    queue.retry(obj)
    queue.done(obj)

    # Not redelivered at once, but only after the backoff.
    assert len(queue) == 0
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(queue.get(), timeout=0.1)
    assert queue.num_requeues(obj) == 1
    queue.shutdown()


async def test_replaced_objects_are_delivered_on_retries(queue):
    queue.add(make(rv='1'))
    obj = await queue.get()
    queue.replace(make(rv='2'))
    queue.retry(obj)
    queue.done(obj)
    retried = await asyncio.wait_for(queue.get(), timeout=1)
    assert retried.resource_version == '2'


async def test_waiting_for_shutdown(queue):
    waiter = asyncio.create_task(queue.wait_shutdown())
    await asyncio.sleep(0)
    assert not waiter.done()
    assert not queue.shutting_down()
    queue.shutdown()
    await asyncio.wait_for(waiter, timeout=1)
    assert queue.shutting_down()
    await asyncio.wait_for(queue.wait_shutdown(), timeout=1)  # already shut down
