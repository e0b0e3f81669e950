import threading
import time

import pytest

from quizengine.core.locks import LockRegistry

pytestmark = pytest.mark.unit


def test_same_key_is_mutually_exclusive():
	locks = LockRegistry()
	inside = []
	overlap = []

	def worker():
		with locks.hold("s1"):
			inside.append(1)
			if len(inside) > 1:
				overlap.append(True)
			time.sleep(0.01)
			inside.pop()

	threads = [threading.Thread(target=worker) for _ in range(8)]
	for t in threads:
		t.start()
	for t in threads:
		t.join()
	assert not overlap


def test_different_keys_do_not_block():
	locks = LockRegistry()
	with locks.hold("a"):
		done = threading.Event()

		def other():
			with locks.hold("b"):
				done.set()

		t = threading.Thread(target=other)
		t.start()
		assert done.wait(1.0)
		t.join()


def test_released_locks_are_dropped():
	locks = LockRegistry()
	with locks.hold("a"):
		assert len(locks) == 1
	assert len(locks) == 0


def test_released_on_error():
	locks = LockRegistry()
	with pytest.raises(RuntimeError):
		with locks.hold("a"):
			raise RuntimeError("boom")
	assert len(locks) == 0
	with locks.hold("a"):
		pass
