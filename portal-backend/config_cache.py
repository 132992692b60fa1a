import threading
import time
from typing import Any, Callable, Dict, Optional

from errors import StoreFailure

APP_CONFIG = "app_config"
DEFAULT_TTL_SECONDS = 5 * 60


class ConfigCache:
    """
    Holds a fetched configuration value with the time it was fetched.

    `fetch` loads the value, `clock` returns seconds (monotonic by default) so
    tests can move time forward deterministically.
    """

    def __init__(self, fetch: Callable[[], Dict[str, Any]], clock: Callable[[], float] = time.monotonic):
        self._fetch = fetch
        self._clock = clock
        self._lock = threading.Lock()
        self.value: Optional[Dict[str, Any]] = None
        self.fetched_at: Optional[float] = None

    def get_or_refresh(self, ttl: float = DEFAULT_TTL_SECONDS) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            if self.value is not None and self.fetched_at is not None and now - self.fetched_at < ttl:
                return self.value

            value = self._fetch()
            self.value = value
            self.fetched_at = now
            return value

    def invalidate(self):
        with self._lock:
            self.value = None
            self.fetched_at = None


def store_config_fetcher(store, doc_id: str = "razorpay") -> Callable[[], Dict[str, Any]]:
    """Fetch function reading `app_config/<doc_id>` from the document store"""
    def _fetch() -> Dict[str, Any]:
        config = store.get(APP_CONFIG, doc_id)
        if not config:
            print(f"❌ [CONFIG] {APP_CONFIG}/{doc_id} not found")
            raise StoreFailure("Payment gateway configuration not found")
        print(f"✅ [CONFIG] Loaded {APP_CONFIG}/{doc_id}")
        return config

    return _fetch


def gateway_credentials(cache: ConfigCache, ttl: float = DEFAULT_TTL_SECONDS) -> Dict[str, str]:
    config = cache.get_or_refresh(ttl)
    return {
        "key_id": config.get("RAZORPAY_KEY_ID", ""),
        "key_secret": config.get("RAZORPAY_KEY_SECRET", ""),
    }
