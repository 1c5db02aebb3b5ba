import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple, Type, Union

import tenacity
from tenacity import retry_if_exception_type, retry_if_result, stop_after_attempt, wait_fixed

_LOGGER = logging.getLogger(__name__)


class RetryException(Exception):
    """
    Provide a custom exception for retry failures
    """

    pass


async def retry_with_fixed_delay(
    task_f: Callable[..., Awaitable[Any]],
    *args,
    attempts: int,
    delay: float,
    retry_on: Union[Type[BaseException], Tuple[Type[BaseException], ...]] = (),
    check_f: Optional[Callable[[Any], bool]] = None,
    description: Optional[str] = None,
    **kwargs,
):
    """
    Await task_f up to `attempts` times, waiting `delay` seconds between tries.

    Waiting is done with asyncio.sleep, so cancelling the calling task (or an enclosing asyncio.wait_for)
    interrupts the retry loop.

    :param task_f: The coroutine function to be run and observed
    :param attempts: Total number of tries
    :param delay: Seconds to wait between tries
    :param retry_on: Exception type(s) that trigger a retry. Other exceptions propagate immediately.
    :param check_f: A function to check if the result of task_f is acceptable. A falsy check triggers a retry.
    :param description: A human readable name of the task for log messages
    :return: The first accepted result of task_f
    :raises RetryException: If check_f keeps rejecting results after all attempts
    :raises: The last exception raised by task_f, if it kept raising one of `retry_on`
    """
    if attempts <= 0:
        raise ValueError("attempts must be positive")
    description = description or getattr(task_f, "__name__", repr(task_f))

    condition = retry_if_exception_type(retry_on) if retry_on else tenacity.retry_never
    if check_f is not None:
        condition = condition | retry_if_result(lambda result: not check_f(result))

    def _log_retry(retry_state: tenacity.RetryCallState):
        outcome = retry_state.outcome
        if outcome.failed:
            why = f"{type(outcome.exception()).__name__}: {outcome.exception()}"
        else:
            why = "result not ready"
        _LOGGER.warning("%s failed on attempt %s/%s (%s). Retrying in %ss...",
                        description, retry_state.attempt_number, attempts, why, delay)

    retrying = tenacity.AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay),
        retry=condition,
        before_sleep=_log_retry,
    )
    try:
        return await retrying(task_f, *args, **kwargs)
    except tenacity.RetryError as err:
        raise RetryException(f"Giving up on {description} after {attempts} failed attempt(s)") from err


async def run_limited_unordered(func, args: Iterable, limit: int) -> List:
    """
    limit the concurrency of asyncio tasks - adapted from https://death.andgravity.com/limit-concurrency
    :param func: async function to run against the args
    :param args: collection of args to be run (each arg is a list of parameters to func)
    :param limit: max number of tasks to run concurrently
    :return: a list of the task results (not necessarily in the order of args given)
    """
    return [it async for it in run_limited_generator(func, args, limit)]


async def run_limited_generator(func, args: Iterable, limit: int):
    tasks = map(lambda params: func(*params), args)
    async for task in _limit_concurrency(tasks, limit):
        yield await task


async def _limit_concurrency(tasks: Iterable, limit: int):
    if limit <= 0:
        raise ValueError("Limit must be positive")
    tasks = iter(tasks)
    complete = False
    pending = set()

    try:
        while pending or not complete:
            while len(pending) < limit and not complete:
                try:
                    task = next(tasks)
                except StopIteration:
                    complete = True
                else:
                    pending.add(asyncio.ensure_future(task))

            if not pending:
                return

            done, pending = await asyncio.wait(
                pending,
                return_when=asyncio.FIRST_COMPLETED,
            )
            while done:
                yield done.pop()
    finally:
        # cancelled from the outside, e.g. by a run-level timeout
        for task in pending:
            task.cancel()
