# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import threading
import time

from fabric_infra.runnable import Buffer

from loguru import logger as LOG

DEFAULT_TIMEOUT_S = 1
DEFAULT_POLL_INTERVAL_S = 0.01


class AssertionTimeout(AssertionError):
    def __init__(self, description, last_value, timeout):
        super().__init__(
            f"Timed out after {timeout}s waiting for {description}\n"
            f"Last observed value: {render(last_value)}"
        )
        self.description = description
        self.last_value = last_value
        self.timeout = timeout


def render(value):
    if isinstance(value, Buffer):
        return value.unread().decode(errors="replace")
    if isinstance(value, threading.Event):
        return "set" if value.is_set() else "not set"
    return repr(value)


class Matcher:
    def __init__(self, description, match):
        self.description = description
        self._match = match

    def __call__(self, actual):
        return bool(self._match(actual))

    def __repr__(self):
        return self.description


def say(pattern):
    """
    Matches a Buffer whose unread contents contain `pattern` (a regex). A
    successful match consumes the buffer up to the end of the match.
    """
    return Matcher(f"output to say {pattern!r}", lambda b: b.detect(pattern))


def equal(expected):
    return Matcher(f"value equal to {expected!r}", lambda v: v == expected)


def be_closed():
    return Matcher("event to be set", lambda e: e.is_set())


def be_true():
    return Matcher("condition to be true", lambda v: v is True)


def have_len(n):
    return Matcher(f"collection of length {n}", lambda v: len(v) == n)


def contain_substring(s):
    return Matcher(f"value containing {s!r}", lambda v: s in v)


def satisfy(predicate, description="predicate to hold"):
    return Matcher(description, predicate)


def _probe(actual):
    if callable(actual) and not isinstance(actual, (Buffer, threading.Event)):
        return actual
    return lambda: actual


def eventually(
    actual,
    matcher,
    timeout=DEFAULT_TIMEOUT_S,
    poll_interval=DEFAULT_POLL_INTERVAL_S,
    description=None,
):
    """
    Poll `actual` (a callable probe, or a value such as a Buffer or an Event)
    every `poll_interval` seconds until `matcher` accepts it. Returns the
    matching value, or raises AssertionTimeout with the last observed value
    once `timeout` has elapsed.
    """
    probe = _probe(actual)
    description = description or repr(matcher)
    end_time = time.time() + timeout
    while True:
        value = probe()
        if matcher(value):
            return value
        if time.time() >= end_time:
            LOG.error(f"Timed out waiting for {description}")
            raise AssertionTimeout(description, value, timeout)
        time.sleep(poll_interval)


def consistently(
    actual,
    matcher,
    duration=DEFAULT_TIMEOUT_S,
    poll_interval=DEFAULT_POLL_INTERVAL_S,
    description=None,
):
    """
    Poll `actual` for `duration` seconds and fail as soon as `matcher`
    rejects it.
    """
    probe = _probe(actual)
    description = description or repr(matcher)
    end_time = time.time() + duration
    while True:
        value = probe()
        if not matcher(value):
            raise AssertionError(
                f"Expected {description} to hold for {duration}s, got {render(value)}"
            )
        if time.time() >= end_time:
            return value
        time.sleep(poll_interval)
