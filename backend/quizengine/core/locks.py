from __future__ import annotations
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Tuple


class LockRegistry:
	"""Named mutexes created on demand and dropped once nobody holds or waits on them."""

	def __init__(self) -> None:
		self._guard = threading.Lock()
		self._locks: Dict[str, Tuple[threading.Lock, int]] = {}

	@contextmanager
	def hold(self, key: str) -> Iterator[None]:
		with self._guard:
			lock, users = self._locks.get(key, (None, 0))
			if lock is None:
				lock = threading.Lock()
			self._locks[key] = (lock, users + 1)
		lock.acquire()
		try:
			yield
		finally:
			lock.release()
			with self._guard:
				_, users = self._locks[key]
				if users <= 1:
					del self._locks[key]
				else:
					self._locks[key] = (lock, users - 1)

	def __len__(self) -> int:
		with self._guard:
			return len(self._locks)
