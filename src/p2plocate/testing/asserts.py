"""
Assertions for behaviour that happens on background threads, such as messages
arriving or the discovery callback being called.
"""

import time
from typing import Callable

DEFAULT_INTERVAL = 0.05
DEFAULT_TIMEOUT = 3.0


def wait_until(
    predicate: Callable[[], bool], *, interval=DEFAULT_INTERVAL, timeout=DEFAULT_TIMEOUT
) -> bool:
    """
    Poll the predicate until it holds or the timeout expires.

    :return: The last value of the predicate.
    """
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() >= deadline:
            return False
        time.sleep(interval)
    return True


def assert_true_soon(p: Callable[[], bool], **kwargs):
    __tracebackhide__ = True  # hide this function in the test traceback
    assert wait_until(p, **kwargs)


def assert_equal_soon(a: Callable, b: Callable, **kwargs):
    __tracebackhide__ = True  # hide this function in the test traceback
    wait_until(lambda: a() == b(), **kwargs)
    assert a() == b()
