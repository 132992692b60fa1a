import pytest

from config_cache import ConfigCache, gateway_credentials, store_config_fetcher
from errors import StoreFailure


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_cached_value_is_reused_within_ttl():
    calls = []
    clock = FakeClock()

    def fetch():
        calls.append(clock.now)
        return {"RAZORPAY_KEY_ID": f"key-{len(calls)}"}

    cache = ConfigCache(fetch, clock=clock)
    assert cache.get_or_refresh(300)["RAZORPAY_KEY_ID"] == "key-1"
    clock.now = 299
    assert cache.get_or_refresh(300)["RAZORPAY_KEY_ID"] == "key-1"
    clock.now = 300
    assert cache.get_or_refresh(300)["RAZORPAY_KEY_ID"] == "key-2"
    assert calls == [0.0, 300]


def test_invalidate_forces_refetch():
    calls = []
    cache = ConfigCache(lambda: calls.append(1) or {}, clock=FakeClock())
    cache.get_or_refresh()
    cache.invalidate()
    cache.get_or_refresh()
    assert len(calls) == 2


def test_store_fetcher_reads_app_config(seeded):
    cache = ConfigCache(store_config_fetcher(seeded))
    assert gateway_credentials(cache) == {"key_id": "rzp_test_key", "key_secret": "test_secret"}


def test_missing_config_is_store_failure(store):
    cache = ConfigCache(store_config_fetcher(store))
    with pytest.raises(StoreFailure):
        cache.get_or_refresh()
