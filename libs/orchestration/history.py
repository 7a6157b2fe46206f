# =============================================================================
# Recorded History
# =============================================================================
# Makes an orchestrator run resumable. Steps are numbered in execution order;
# before step N runs, the history store is checked for a recorded result at
# N. A recorded step returns its stored result, an unrecorded one executes
# and its result is recorded. Step code must therefore be deterministic in
# the sequence of steps it issues.
# =============================================================================

import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from libs.errors import NonDeterminismError, RetryExhaustedError
from libs.models import RetryState, StepRecord
from libs.retry_policy import DurableRetryPolicy, classify

__all__ = ["RecordedHistory"]

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    # Mongo returns naive UTC datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class RecordedHistory:
    """
    Step-indexed replay log for one (run_id, attempt).

    Attributes:
        executed: Names of steps that actually ran during this invocation
        replayed: Number of steps answered from the record
    """

    def __init__(
        self,
        store,
        run_id: str,
        attempt: int,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.run_id = run_id
        self.attempt = attempt
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._rng = rng
        self._log = log or logger
        self._seq = 0
        self.executed: list[str] = []
        self.replayed = 0

    def _next(self, name: str) -> tuple[int, Optional[StepRecord]]:
        seq = self._seq
        self._seq += 1
        record = self.store.get_step(self.run_id, self.attempt, seq)
        if record is not None and record.name != name:
            raise NonDeterminismError(
                f"Run {self.run_id} attempt {self.attempt}: step {seq} was recorded as "
                f"'{record.name}' but replay reached '{name}'"
            )
        return seq, record

    def _record(self, seq: int, name: str, result: Any) -> Any:
        self.store.record_step(
            StepRecord(
                run_id=self.run_id,
                attempt=self.attempt,
                seq=seq,
                name=name,
                result=result,
                recorded_at=self._clock(),
            )
        )
        self.executed.append(name)
        return result

    def step(self, name: str, fn: Callable[[], Any]) -> Any:
        """Run fn as the next step, or return its recorded result."""
        seq, record = self._next(name)
        if record is not None:
            self.replayed += 1
            return record.result
        return self._record(seq, name, fn())

    def retry_step(self, name: str, fn: Callable[[], Any], policy: DurableRetryPolicy) -> Any:
        """
        Run fn as the next step under the durable retry policy.

        Failed attempts are persisted, so the attempt count and the time
        budget carry over when the run is resumed in a new process.

        Raises:
            The original error if it is classified fatal
            RetryExhaustedError: Attempts or the cumulative time budget ran out
        """
        seq, record = self._next(name)
        if record is not None:
            self.replayed += 1
            return record.result

        state = self.store.get_retry_state(self.run_id, self.attempt, seq) or RetryState(
            run_id=self.run_id, attempt=self.attempt, seq=seq, name=name
        )

        while True:
            if state.attempts >= policy.max_attempts:
                raise RetryExhaustedError(name, state.attempts, state.last_error)
            if state.first_attempt_at is not None and self._elapsed(state) > policy.retry_timeout:
                raise RetryExhaustedError(name, state.attempts, state.last_error)

            try:
                result = fn()
            except Exception as e:
                decision = classify(e)
                now = self._clock()
                state = state.model_copy(
                    update={
                        "attempts": state.attempts + 1,
                        "first_attempt_at": state.first_attempt_at or now,
                        "last_error": f"{type(e).__name__}: {e}",
                    }
                )
                self.store.record_retry_failure(state)

                if not decision.retryable:
                    self._log.error(f"Step {name} failed fatally ({decision.reason}): {e}")
                    raise
                if state.attempts >= policy.max_attempts:
                    raise RetryExhaustedError(name, state.attempts, state.last_error) from e

                delay = policy.delay_for(state.attempts - 1, self._rng)
                if self._elapsed(state) + delay > policy.retry_timeout:
                    raise RetryExhaustedError(name, state.attempts, state.last_error) from e

                self._log.warning(
                    f"Step {name} failed ({decision.reason}), attempt "
                    f"{state.attempts}/{policy.max_attempts}; retrying in {delay:.1f}s"
                )
                self._sleep(delay)
                continue

            return self._record(seq, name, result)

    def _elapsed(self, state: RetryState) -> float:
        return (self._clock() - _aware(state.first_attempt_at)).total_seconds()
