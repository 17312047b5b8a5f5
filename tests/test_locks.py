import threading

from thermoband.utils.locks import KeyedLocks


def test_locks_are_dropped_once_released():
    locks = KeyedLocks()
    with locks.hold(("mac", "A"), ("patient", "1"), ("mac", "A")):
        assert len(locks) == 2
    assert len(locks) == 0


def test_waiters_keep_the_lock_alive_until_done():
    locks = KeyedLocks()
    entered = threading.Event()
    release = threading.Event()
    order = []

    def first():
        with locks.hold("k"):
            entered.set()
            release.wait(5)
            order.append("first")

    def second():
        entered.wait(5)
        with locks.hold("k"):
            order.append("second")

    threads = [threading.Thread(target=first), threading.Thread(target=second)]
    for t in threads:
        t.start()
    entered.wait(5)
    release.set()
    for t in threads:
        t.join()

    assert order == ["first", "second"]
    assert len(locks) == 0


def test_many_distinct_keys_do_not_accumulate():
    locks = KeyedLocks()
    for i in range(1000):
        with locks.hold(("patient", str(i))):
            pass
    assert len(locks) == 0
