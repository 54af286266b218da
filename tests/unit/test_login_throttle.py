"""Unit tests for the per-IP login throttle"""

from epulsaku.services.login_throttle import LoginThrottle


class Ticker:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_locks_after_max_attempts():
    """Test the fifth failure inside the window locks the IP"""
    ticker = Ticker()
    throttle = LoginThrottle(max_attempts=5, window_seconds=120, clock=ticker)

    for expected in range(1, 5):
        assert throttle.record_failure("10.0.0.1") == expected
        assert throttle.seconds_locked("10.0.0.1") == 0

    throttle.record_failure("10.0.0.1")
    assert throttle.seconds_locked("10.0.0.1") == 120
    assert throttle.seconds_locked("10.0.0.2") == 0


def test_lockout_counts_down_and_expires():
    """Test remaining seconds round up and the entry expires with the window"""
    ticker = Ticker()
    throttle = LoginThrottle(max_attempts=2, window_seconds=120, clock=ticker)
    throttle.record_failure("ip")
    throttle.record_failure("ip")

    ticker.now += 100.2
    assert throttle.seconds_locked("ip") == 20

    ticker.now += 20
    assert throttle.seconds_locked("ip") == 0
    assert throttle.record_failure("ip") == 1


def test_each_failure_extends_window():
    """Test the window restarts from the latest failure"""
    ticker = Ticker()
    throttle = LoginThrottle(max_attempts=3, window_seconds=60, clock=ticker)
    throttle.record_failure("ip")
    ticker.now += 50
    throttle.record_failure("ip")
    ticker.now += 50
    assert throttle.record_failure("ip") == 3
    assert throttle.seconds_locked("ip") == 60


def test_reset_clears_ip():
    """Test a successful login clears the failure count"""
    throttle = LoginThrottle(max_attempts=2, window_seconds=60, clock=Ticker())
    throttle.record_failure("ip")
    throttle.record_failure("ip")

    throttle.reset("ip")

    assert throttle.seconds_locked("ip") == 0
    assert throttle.record_failure("ip") == 1


def test_expired_entries_are_swept():
    """Test IPs that never come back are dropped once their window lapses"""
    ticker = Ticker()
    throttle = LoginThrottle(max_attempts=5, window_seconds=120, clock=ticker)
    for i in range(100):
        throttle.record_failure(f"10.0.1.{i}")
    assert len(throttle.tracked_ips) == 100

    ticker.now += 121
    throttle.record_failure("10.0.2.1")
    ticker.now += 60
    throttle.record_failure("10.0.2.2")

    assert throttle.tracked_ips == {"10.0.2.1", "10.0.2.2"}
    assert throttle.seconds_locked("10.0.2.1") == 0
