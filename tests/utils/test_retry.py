import pytest

from kubeprov.utils.retry import RetryError, RetryPolicy, wait_until


class Probe:
    def __init__(self, succeed_on=None):
        self.calls = 0
        self.succeed_on = succeed_on

    def __call__(self):
        self.calls += 1
        return self.succeed_on is not None and self.calls >= self.succeed_on


def test_returns_immediately_on_first_success():
    sleeps = []
    probe = Probe(succeed_on=1)
    assert wait_until(probe, RetryPolicy(), sleep=sleeps.append) == 1
    assert probe.calls == 1
    assert sleeps == []


def test_constant_spacing_until_success():
    sleeps = []
    probe = Probe(succeed_on=4)
    assert wait_until(probe, RetryPolicy(max_attempts=150, interval=2.0), sleep=sleeps.append) == 4
    assert sleeps == [2.0, 2.0, 2.0]


def test_default_policy_never_exceeds_150_probes():
    sleeps = []
    probe = Probe()
    with pytest.raises(RetryError, match="150 attempts"):
        wait_until(probe, RetryPolicy(), sleep=sleeps.append)
    assert probe.calls == 150
    assert len(sleeps) == 149
    assert set(sleeps) == {2.0}
    assert sum(sleeps) <= 300


def test_backoff_multiplies_interval():
    sleeps = []
    with pytest.raises(RetryError):
        wait_until(Probe(), RetryPolicy(max_attempts=4, interval=1.0, backoff=2.0), sleep=sleeps.append)
    assert sleeps == [1.0, 2.0, 4.0]


def test_on_retry_sees_each_failed_attempt():
    seen = []
    wait_until(Probe(succeed_on=3), RetryPolicy(interval=0), sleep=lambda s: None, on_retry=seen.append)
    assert seen == [1, 2]


def test_zero_attempts_is_invalid():
    with pytest.raises(ValueError):
        wait_until(Probe(), RetryPolicy(max_attempts=0), sleep=lambda s: None)
