"""
Per-customer locking.

Every mutation of a customer's balance runs while holding the lock for that
(shop_domain, customer_id) pair. The in-process lock serializes request threads
inside one worker; the row lock taken by BalanceProjection.lock_account()
serializes across workers on databases that support SELECT ... FOR UPDATE.
Different customers never share a lock.
"""
import threading
import weakref
from contextlib import contextmanager


class CustomerLockRegistry:
    """Hands out one lock per customer; locks are dropped once nobody holds them."""

    def __init__(self):
        self._lock = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def get(self, shop_domain: str, customer_id: str) -> threading.RLock:
        key = (shop_domain, str(customer_id))
        with self._lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, shop_domain: str, customer_id: str):
        lock = self.get(shop_domain, customer_id)
        with lock:
            yield


customer_locks = CustomerLockRegistry()
