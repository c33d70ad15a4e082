"""Bounded polling shared by every wait loop (lifecycle, address, SSH, validation)."""

import asyncio
import inspect
import logging

logger = logging.getLogger(__name__)


class RetryExhausted(Exception):
    """The attempt budget ran out. ``last`` is the final pending observation."""

    def __init__(self, attempts, last=None):
        self.attempts = attempts
        self.last = last
        super().__init__(f"gave up after {attempts} attempts (last: {last!r})")


async def poll_until(attempt, policy, description, sleep=None):
    """Call *attempt* until it reports completion or the policy is exhausted.

    Args:
        attempt: callable (sync or async) returning ``(done, value)``. When
            ``done`` is true, ``value`` is the result; otherwise it is the
            observation kept for diagnostics.
        policy: RetryPolicy. The first attempt runs immediately and there is
            no sleep after the last one, so a loop that never succeeds sleeps
            exactly ``(attempts - 1) * delay``.
        description: what is being waited for, used in progress logs.
        sleep: async callable taking seconds (default ``asyncio.sleep``).

    Returns:
        The ``value`` of the first successful attempt.

    Raises:
        RetryExhausted: after ``policy.attempts`` unsuccessful attempts.
    """
    sleep = sleep or asyncio.sleep
    last = None
    for i in range(1, policy.attempts + 1):
        result = attempt()
        if inspect.isawaitable(result):
            result = await result
        done, value = result
        if done:
            return value
        last = value
        logger.info(f"Waiting for {description} ({i}/{policy.attempts})")
        if i < policy.attempts:
            await sleep(policy.delay)

    raise RetryExhausted(policy.attempts, last)
