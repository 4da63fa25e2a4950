START_MS = 1_700_000_000_000


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingProcessor:
    """Processor whose outcome per attempt is scripted by ``outcomes``.

    Each entry is either an exception instance (raised) or a value
    (returned). The last entry repeats once the list is exhausted.
    """

    def __init__(self, *outcomes, clock=None):
        self.outcomes = list(outcomes) or [None]
        self.clock = clock
        self.calls = []
        self.successes = []
        self.failures = []
        self.retries = []

    async def process(self, job):
        self.calls.append((job.attempts, self.clock() if self.clock else None))
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def on_success(self, job, result):
        self.successes.append((job.id, result))

    async def on_failure(self, job, error):
        self.failures.append((job.id, error))

    async def on_retry(self, job, error):
        self.retries.append((job.id, error))
