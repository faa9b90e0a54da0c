from backend.app.rate_limit import LoginRateLimiter, client_ip


class _Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_blocks_after_max_attempts_and_expires():
    clock = _Clock()
    limiter = LoginRateLimiter(max_attempts=3, block_seconds=300, clock=clock)

    assert limiter.register_failure("1.2.3.4") is False
    assert limiter.register_failure("1.2.3.4") is False
    assert limiter.status("1.2.3.4") == {"is_locked": False, "remaining_seconds": 0}
    assert limiter.register_failure("1.2.3.4") is True

    clock.now += 10.5
    st = limiter.status("1.2.3.4")
    assert st["is_locked"] is True
    assert st["remaining_seconds"] == 290
    assert limiter.remaining_block_seconds("1.2.3.4") == 290

    clock.now += 300
    assert limiter.status("1.2.3.4")["is_locked"] is False
    # Expired block starts a fresh count.
    assert limiter.register_failure("1.2.3.4") is False


def test_success_resets_and_ips_are_independent():
    limiter = LoginRateLimiter(max_attempts=2, block_seconds=60, clock=_Clock())
    limiter.register_failure("a")
    limiter.reset("a")
    assert limiter.register_failure("a") is False
    assert limiter.register_failure("b") is False
    assert limiter.register_failure("b") is True
    assert limiter.status("a")["is_locked"] is False


def test_client_ip_prefers_forwarded_header():
    assert client_ip("10.0.0.1, 172.16.0.1", "9.9.9.9", "127.0.0.1") == "10.0.0.1"
    assert client_ip(None, " 9.9.9.9 ", "127.0.0.1") == "9.9.9.9"
    assert client_ip("", "", "127.0.0.1") == "127.0.0.1"
    assert client_ip(None, None, None) == "unknown"
