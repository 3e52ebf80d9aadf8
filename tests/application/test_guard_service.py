"""Tests for GuardService -- check / record_failure / record_success."""
import threading

import pytest

from loginguard.application.guard_service import GuardService
from loginguard.domain.attempt import AttemptRecord
from loginguard.domain.errors import InvalidIdentity
from loginguard.domain.identity import derive_identity
from loginguard.domain.policy import MINUTE_MS, RateLimitPolicy
from loginguard.infrastructure.store.memory_store import InMemoryAttemptStore
from tests.conftest import EMAIL, ORIGIN, AuditRecorder, FakeClock

KEY = derive_identity(ORIGIN, EMAIL).key


def _fail(service, times, origin=ORIGIN, email=EMAIL):
    result = None
    for _ in range(times):
        result = service.record_failure(origin, email)
    return result


class TestCheck:
    def test_unknown_identity_allowed(self, service, policy):
        result = service.check(ORIGIN, EMAIL)
        assert result.allowed
        assert result.remaining == policy.max_attempts - 1
        assert result.retry_after is None

    def test_check_records_nothing(self, service, memory_store):
        service.check(ORIGIN, EMAIL)
        service.check(ORIGIN, EMAIL)
        assert memory_store.get(KEY) is None

    def test_remaining_follows_failures(self, service):
        _fail(service, 2)
        assert service.check(ORIGIN, EMAIL).remaining == 2

    def test_missing_origin_raises(self, service):
        with pytest.raises(InvalidIdentity):
            service.check(None, EMAIL)

    def test_exhausted_record_gets_locked_on_check(self, service, memory_store, clock, audit_events):
        memory_store.set(KEY, AttemptRecord(count=5, window_start=clock.now))
        result = service.check(ORIGIN, EMAIL)
        assert not result.allowed
        assert result.retry_after == 1800
        assert memory_store.get(KEY).locked_until == clock.now + 30 * MINUTE_MS
        assert [e[0] for e in audit_events] == ["login_locked"]

    def test_lock_written_once(self, service, memory_store, clock):
        memory_store.set(KEY, AttemptRecord(count=5, window_start=clock.now))
        service.check(ORIGIN, EMAIL)
        clock.advance_minutes(1)
        result = service.check(ORIGIN, EMAIL)
        assert result.retry_after == 29 * 60
        assert memory_store.get(KEY).locked_until == clock.now - MINUTE_MS + 30 * MINUTE_MS


class TestRecordFailure:
    def test_first_failure(self, service, memory_store, clock):
        result = service.record_failure(ORIGIN, EMAIL)
        assert result.remaining_attempts == 3
        assert not result.locked
        assert result.retry_after is None
        rec = memory_store.get(KEY)
        assert rec.count == 1
        assert rec.window_start == clock.now

    def test_fifth_failure_locks(self, service, policy):
        for i in range(policy.max_attempts - 1):
            assert not service.record_failure(ORIGIN, EMAIL).locked
        result = service.record_failure(ORIGIN, EMAIL)
        assert result.locked
        assert result.remaining_attempts == 0
        assert result.retry_after == 1800

    def test_check_after_lock_denied(self, service, policy, clock):
        _fail(service, policy.max_attempts)
        clock.advance(1)
        result = service.check(ORIGIN, EMAIL)
        assert not result.allowed
        assert 1799 <= result.retry_after <= 1800

    def test_expired_window_starts_fresh(self, service, memory_store, clock):
        _fail(service, 3)
        clock.advance_minutes(16)
        service.record_failure(ORIGIN, EMAIL)
        rec = memory_store.get(KEY)
        assert rec.count == 1
        assert rec.window_start == clock.now

    def test_failure_during_lock_keeps_lock(self, service, memory_store, policy, clock):
        _fail(service, policy.max_attempts)
        locked_until = memory_store.get(KEY).locked_until
        clock.advance_minutes(20)  # window over, lock still active
        result = service.record_failure(ORIGIN, EMAIL)
        assert result.locked
        assert result.retry_after == 10 * 60
        assert memory_store.get(KEY).locked_until == locked_until
        assert not service.check(ORIGIN, EMAIL).allowed

    def test_lock_is_audited(self, service, policy, audit_events):
        _fail(service, policy.max_attempts)
        action, key, payload = audit_events[-1]
        assert action == "login_locked"
        assert key == KEY
        assert payload == {"retry_after": 1800, "failed_attempts": 5}

    def test_audit_failure_does_not_break_decision(self, memory_store, policy, clock):
        class BrokenAudit:
            def log_lock(self, *_):
                raise OSError("disk full")

        svc = GuardService(memory_store, policy, clock=clock, audit=BrokenAudit())
        result = _fail(svc, policy.max_attempts)
        assert result.locked


class TestRecordSuccess:
    def test_success_clears_lock(self, service, policy):
        _fail(service, policy.max_attempts)
        service.record_success(ORIGIN, EMAIL)
        result = service.check(ORIGIN, EMAIL)
        assert result.allowed
        assert result.remaining == policy.max_attempts - 1

    def test_success_without_history_is_noop(self, service, audit_events):
        service.record_success(ORIGIN, EMAIL)
        assert audit_events == []

    def test_reset_is_audited(self, service, policy, audit_events):
        _fail(service, policy.max_attempts)
        service.record_success(ORIGIN, EMAIL)
        action, _, payload = audit_events[-1]
        assert action == "login_reset"
        assert payload == {"cleared_count": 5, "was_locked": True}


class TestIsolation:
    def test_other_identity_unaffected(self, service, policy):
        _fail(service, policy.max_attempts, origin="198.51.100.1")
        assert not service.check("198.51.100.1", EMAIL).allowed
        assert service.check("198.51.100.2", EMAIL).allowed
        assert service.check("198.51.100.1", "other@example.com").allowed

    def test_account_case_shares_bucket(self, service, policy):
        _fail(service, policy.max_attempts, email="USER@example.com ")
        assert not service.check(ORIGIN, "user@example.com").allowed


class TestWindowExpiry:
    def test_window_expiry_resets_budget(self, service, policy, clock):
        _fail(service, policy.max_attempts - 1)
        clock.advance(policy.window_ms + 1)
        result = service.check(ORIGIN, EMAIL)
        assert result.allowed
        assert result.remaining == policy.max_attempts - 1

    def test_lock_then_window_expiry(self, service, policy, clock):
        _fail(service, policy.max_attempts)
        clock.advance_minutes(31)
        result = service.check(ORIGIN, EMAIL)
        assert result.allowed
        assert result.remaining == policy.max_attempts - 1


class TestSweep:
    def test_amortized_sweep_drops_stale_records(self, service, memory_store, policy, clock):
        memory_store.set("stale", AttemptRecord(count=2, window_start=clock.now))
        clock.advance(policy.window_ms + policy.lockout_ms + 1)
        service.check("10.0.0.9")  # any call may trigger the sweep
        assert memory_store.get("stale") is None

    def test_sweep_keeps_active_lock(self, service, memory_store, policy, clock):
        _fail(service, policy.max_attempts)
        clock.advance_minutes(29)
        service.sweep()
        assert memory_store.get(KEY) is not None

    def test_sweep_short_circuits_inside_interval(self, memory_store, clock):
        policy = RateLimitPolicy(sweep_interval_ms=10 * MINUTE_MS)
        calls = []
        memory_store.sweep = lambda now: calls.append(now)
        svc = GuardService(memory_store, policy, clock=clock)
        for _ in range(5):
            svc.check(ORIGIN, EMAIL)
            clock.advance_minutes(1)
        assert calls == []
        clock.advance_minutes(10)
        svc.check(ORIGIN, EMAIL)
        assert len(calls) == 1

    def test_failing_sweep_does_not_fail_the_call(self, memory_store, policy, clock):
        calls = []

        def exploding_sweep(now):
            calls.append(now)
            raise RuntimeError("lock timeout on bulk delete")

        memory_store.sweep = exploding_sweep
        svc = GuardService(memory_store, policy, clock=clock)
        clock.advance_minutes(10)

        result = svc.check(ORIGIN, EMAIL)
        assert result.allowed
        assert svc.record_failure(ORIGIN, EMAIL).remaining_attempts == 3
        svc.record_success(ORIGIN, EMAIL)
        # one attempt, then it waits a full interval before trying again
        assert len(calls) == 1
        clock.advance(policy.sweep_interval_ms)
        svc.check(ORIGIN, EMAIL)
        assert len(calls) == 2


class TestConcurrency:
    @pytest.mark.parametrize("n", [2, 5])
    def test_no_lost_updates(self, n):
        policy = RateLimitPolicy()
        store = InMemoryAttemptStore(policy)
        svc = GuardService(store, policy, clock=FakeClock())
        barrier = threading.Barrier(n)
        errors = []

        def worker():
            try:
                barrier.wait()
                svc.record_failure(ORIGIN, EMAIL)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert store.get(KEY).count == n

    def test_hammering_locks_exactly_once(self):
        policy = RateLimitPolicy()
        store = InMemoryAttemptStore(policy)
        locks = []
        svc = GuardService(store, policy, clock=FakeClock(), audit=AuditRecorder(locks))

        threads = [
            threading.Thread(target=svc.record_failure, args=(ORIGIN, EMAIL))
            for _ in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get(KEY).count == 20
        assert [action for action, _, _ in locks] == ["login_locked"]
