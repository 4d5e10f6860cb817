from confreg.services.security import (
    PIN_LENGTH,
    EmailAttemptLimiter,
    InMemoryRateLimiter,
    InMemorySessionStore,
    generate_pin,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_pin_is_numeric_and_fixed_length():
    for _ in range(50):
        pin = generate_pin()
        assert len(pin) == PIN_LENGTH
        assert pin.isdigit()


def test_session_expiry_slides_on_use():
    clock = FakeClock()
    store = InMemorySessionStore(ttl_seconds=60, clock=clock)
    session = store.create(7)
    assert session.csrf_token

    clock.now += 50
    assert store.get(session.session_id).registration_id == 7
    clock.now += 50
    assert store.get(session.session_id) is not None
    clock.now += 61
    assert store.get(session.session_id) is None
    assert len(store) == 0


def test_session_delete_and_expire_sweep():
    clock = FakeClock()
    store = InMemorySessionStore(ttl_seconds=10, clock=clock)
    keep = store.create(1)
    stale = store.create(2)
    store.delete(keep.session_id)
    assert store.get(keep.session_id) is None

    clock.now += 11
    assert store.expire() == 1
    assert store.get(stale.session_id) is None
    assert store.get(None) is None


def test_email_limiter_blocks_after_too_many_failures():
    clock = FakeClock()
    limiter = EmailAttemptLimiter(window_seconds=600, max_attempts=3, block_seconds=1800, clock=clock)
    for _ in range(3):
        assert limiter.check("a@b.co", "1.2.3.4") is None
        limiter.record_failure("a@b.co", "1.2.3.4")
    assert limiter.check("a@b.co", "1.2.3.4") is None

    limiter.record_failure("a@b.co", "1.2.3.4")
    assert limiter.check("a@b.co", "1.2.3.4") == 1800
    assert limiter.check("a@b.co", "5.6.7.8") is None

    clock.now += 1801
    assert limiter.check("a@b.co", "1.2.3.4") is None


def test_email_limiter_resets_on_success_and_after_window():
    clock = FakeClock()
    limiter = EmailAttemptLimiter(window_seconds=600, max_attempts=1, block_seconds=1800, clock=clock)
    limiter.record_failure("a@b.co", "ip")
    limiter.reset("a@b.co", "ip")
    limiter.record_failure("a@b.co", "ip")
    assert limiter.check("a@b.co", "ip") is None

    clock.now += 601
    limiter.record_failure("a@b.co", "ip")
    assert limiter.check("a@b.co", "ip") is None


def test_rate_limiter_caps_events_per_key():
    limiter = InMemoryRateLimiter()
    assert limiter.allow("k", 2, 60)
    assert limiter.allow("k", 2, 60)
    assert not limiter.allow("k", 2, 60)
    assert limiter.allow("other", 2, 60)


def test_email_limiter_sweeps_lapsed_keys_but_keeps_blocked_ones():
    clock = FakeClock()
    limiter = EmailAttemptLimiter(window_seconds=600, max_attempts=1, block_seconds=1800, sweep_seconds=60, clock=clock)
    for n in range(50):
        limiter.record_failure(f"user{n}@b.co", "ip")
    limiter.record_failure("blocked@b.co", "ip")
    limiter.record_failure("blocked@b.co", "ip")
    assert len(limiter) == 51

    clock.now += 601
    limiter.record_failure("late@b.co", "ip")
    assert len(limiter) == 2
    assert limiter.check("blocked@b.co", "ip") is not None

    clock.now += 1800
    assert limiter.prune() == 2
    assert len(limiter) == 0


def test_rate_limiter_sweeps_idle_keys():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(sweep_seconds=60, clock=clock)
    for n in range(50):
        assert limiter.allow(f"login:10.0.0.{n}", 5, 60)
    assert limiter.allow("upload:busy", 5, 600)
    assert len(limiter) == 51

    clock.now += 61
    assert limiter.allow("login:fresh", 5, 60)
    assert len(limiter) == 2

    clock.now += 600
    assert limiter.prune() == 2
    assert len(limiter) == 0


def test_pins_are_not_repeated():
    assert len({generate_pin() for _ in range(50)}) > 45
