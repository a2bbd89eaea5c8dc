import hashlib
import re
from datetime import datetime, timedelta, timezone

import pytest

from backend.tagredirect.errors import ConfigurationError
from backend.tagredirect.privacy import DEV_FALLBACK_SECRET, PrivacyHasher

HEX64 = re.compile(r"^[0-9a-f]{64}$")


class MutableClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.mark.parametrize("ip", ["203.0.113.7", "10.0.0.1", "2001:db8::1", "::1"])
def test_hash_is_64_hex_and_stable_within_a_day(ip):
    clock = MutableClock(datetime(2026, 3, 14, 0, 0, 1, tzinfo=timezone.utc))
    hasher = PrivacyHasher("s3cret", clock=clock)
    first = hasher.hash(ip)
    clock.now = datetime(2026, 3, 14, 23, 59, 59, tzinfo=timezone.utc)
    assert HEX64.match(first)
    assert hasher.hash(ip) == first


def test_hash_changes_across_utc_dates():
    clock = MutableClock(datetime(2026, 3, 14, 23, 59, tzinfo=timezone.utc))
    hasher = PrivacyHasher("s3cret", clock=clock)
    before = hasher.hash("198.51.100.4")
    clock.now += timedelta(minutes=2)
    assert hasher.hash("198.51.100.4") != before


def test_hash_construction_matches_salted_sha256():
    hasher = PrivacyHasher("s3cret", clock=lambda: datetime(2026, 1, 2, 5, tzinfo=timezone.utc))
    expected = hashlib.sha256(b"192.0.2.1|s3cret:2026-01-02").hexdigest()
    assert hasher.hash("192.0.2.1") == expected


def test_date_is_taken_in_utc():
    # 23:30 at UTC-05:00 is already the next day in UTC
    local = timezone(timedelta(hours=-5))
    hasher = PrivacyHasher("s3cret", clock=lambda: datetime(2026, 1, 1, 23, 30, tzinfo=local))
    assert hasher.salt_for(hasher.today()) == "s3cret:2026-01-02"


def test_missing_ip_uses_placeholder():
    hasher = PrivacyHasher("s3cret", clock=lambda: datetime(2026, 1, 2, tzinfo=timezone.utc))
    assert hasher.hash(None) == hasher.hash("0.0.0.0")
    assert hasher.hash("   ") == hasher.hash("0.0.0.0")


def test_different_secrets_are_unlinkable():
    now = datetime(2026, 1, 2, tzinfo=timezone.utc)
    a = PrivacyHasher("secret-a", clock=lambda: now)
    b = PrivacyHasher("secret-b", clock=lambda: now)
    assert a.hash("192.0.2.1") != b.hash("192.0.2.1")


def test_dev_fallback_outside_production():
    now = datetime(2026, 1, 2, tzinfo=timezone.utc)
    hasher = PrivacyHasher(None, production=False, clock=lambda: now)
    assert hasher.hash("192.0.2.1") == PrivacyHasher(DEV_FALLBACK_SECRET, clock=lambda: now).hash("192.0.2.1")


def test_missing_secret_in_production_is_fatal():
    with pytest.raises(ConfigurationError):
        PrivacyHasher("", production=True)
