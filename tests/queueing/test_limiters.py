import pytest

from declsync._cogs.aiokits.aiolimiters import BucketLimiter, ItemExponentialLimiter, MaxOfLimiter
from declsync._cogs.configs.configuration import ReconcilerSettings
from declsync._core.reactor.queueing import make_limiter


def test_exponential_growth_and_cap():
    limiter = ItemExponentialLimiter(base_delay=0.01, max_delay=0.1)
    delays = [limiter.when('a') for _ in range(6)]
    assert delays == [0.01, 0.02, 0.04, 0.08, 0.1, 0.1]
    assert limiter.num_requeues('a') == 6


def test_exponential_is_per_item():
    limiter = ItemExponentialLimiter(base_delay=1, max_delay=100)
    limiter.when('a')
    limiter.when('a')
    assert limiter.when('b') == 1
    assert limiter.num_requeues('a') == 2
    assert limiter.num_requeues('b') == 1


def test_exponential_forgetting():
    limiter = ItemExponentialLimiter(base_delay=1, max_delay=100)
    limiter.when('a')
    limiter.when('a')
    limiter.forget('a')
    assert limiter.num_requeues('a') == 0
    assert limiter.when('a') == 1


def test_exponential_never_overflows():
    limiter = ItemExponentialLimiter(base_delay=1, max_delay=100)
    for _ in range(2000):
        delay = limiter.when('a')
    assert delay == 100


def test_bucket_allows_a_burst():
    now = [0.0]
    limiter = BucketLimiter(qps=10, burst=3, clock=lambda: now[0])
    assert [limiter.when(i) for i in range(3)] == [0, 0, 0]
    assert limiter.when(3) == pytest.approx(0.1)
    assert limiter.when(4) == pytest.approx(0.2)


def test_bucket_refills_over_time():
    now = [0.0]
    limiter = BucketLimiter(qps=10, burst=2, clock=lambda: now[0])
    limiter.when('a')
    limiter.when('b')
    now[0] = 1.0
    assert limiter.when('c') == 0
    assert limiter.when('d') == 0


def test_bucket_does_not_track_items():
    limiter = BucketLimiter(qps=10, burst=2)
    limiter.when('a')
    limiter.forget('a')
    assert limiter.num_requeues('a') == 0


def test_max_of_limiters():
    now = [0.0]
    limiter = MaxOfLimiter(
        ItemExponentialLimiter(base_delay=1, max_delay=100),
        BucketLimiter(qps=1, burst=1, clock=lambda: now[0]),
    )
    assert limiter.when('a') == 1  # the exponential one
    assert limiter.when('b') == 1  # both
    assert limiter.when('a') == 2  # both
    assert limiter.num_requeues('a') == 2
    limiter.forget('a')
    assert limiter.num_requeues('a') == 0


def test_default_limiter_from_settings():
    settings = ReconcilerSettings()
    settings.queueing.base_delay = 0.5
    settings.queueing.max_delay = 2.0
    limiter = make_limiter(settings)
    assert limiter.when('a') == 0.5
    assert limiter.when('a') == 1.0
    assert limiter.when('a') == 2.0
    assert limiter.when('a') == 2.0
