import sys
import threading
import time
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent.absolute()
sys.path.append(str(PROJECT_ROOT))

import pytest

from fipe_gateway.core.singleflight import SingleFlight


def test_single_caller_runs_fn():
    flight = SingleFlight()
    assert flight.do("k", lambda: 42) == (42, False)
    assert flight.in_flight() == 0


def test_concurrent_callers_share_one_call():
    flight = SingleFlight()
    release = threading.Event()
    calls = []
    results = []

    def slow():
        calls.append(1)
        release.wait(5)
        return "answer"

    def worker():
        results.append(flight.do("k", slow))

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    # Let every thread reach do() while the leader is blocked
    deadline = time.time() + 5
    while flight.in_flight() == 0 and time.time() < deadline:
        time.sleep(0.01)
    time.sleep(0.2)
    release.set()
    for t in threads:
        t.join()

    assert len(calls) == 1
    assert sorted(shared for _, shared in results) == [False, True, True, True, True]
    assert all(value == "answer" for value, _ in results)


def test_failure_is_shared_and_key_released():
    flight = SingleFlight()

    def boom():
        raise ValueError("nope")

    with pytest.raises(ValueError):
        flight.do("k", boom)
    assert flight.in_flight() == 0
    assert flight.do("k", lambda: "recovered") == ("recovered", False)


def test_waiter_times_out():
    flight = SingleFlight()
    release = threading.Event()
    leader = threading.Thread(target=flight.do, args=("k", lambda: release.wait(5)))
    leader.start()
    while flight.in_flight() == 0:
        time.sleep(0.01)

    with pytest.raises(FutureTimeoutError):
        flight.do("k", lambda: "unused", timeout=0.05)
    release.set()
    leader.join()


def test_distinct_keys_do_not_coalesce():
    flight = SingleFlight()
    assert flight.do("a", lambda: 1) == (1, False)
    assert flight.do("b", lambda: 2) == (2, False)
