import pytest

from jobrunner.jobs.models import Job
from jobrunner.jobs.retry import RetryPolicy


def test_backoff_doubles_from_the_base_delay():
    policy = RetryPolicy(base_delay=100)

    assert [policy.next_delay(k) for k in range(1, 6)] == [100, 200, 400, 800, 1600]


def test_default_base_delay_is_five_seconds():
    assert RetryPolicy().next_delay(1) == 5000
    assert RetryPolicy().next_delay(3) == 20000


def test_next_delay_requires_a_counted_attempt():
    with pytest.raises(ValueError, match="attempts must be >= 1"):
        RetryPolicy().next_delay(0)


@pytest.mark.parametrize(
    "attempts,max_attempts,expected",
    [(1, 3, True), (2, 3, True), (3, 3, False), (1, 1, False)],
)
def test_should_retry_compares_attempts_with_budget(attempts, max_attempts, expected):
    job = Job(id="job_1", type="t", attempts=attempts, max_attempts=max_attempts)

    assert RetryPolicy().should_retry(job) is expected
