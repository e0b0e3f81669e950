from __future__ import annotations
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional


class SlidingWindowLimiter:
	"""In-process limiter: at most `max_requests` per `window_seconds` for each key.

	`hit` checks and counts in one step. `retry_after` and `record` split the two, for
	callers that only count some requests (failed logins).
	"""

	def __init__(self, max_requests: int, window_seconds: float, clock: Optional[Callable[[], float]] = None) -> None:
		self.max_requests = max_requests
		self.window_seconds = window_seconds
		self._clock = clock or time.monotonic
		self._hits: Dict[str, Deque[float]] = {}
		self._lock = threading.Lock()

	@property
	def enabled(self) -> bool:
		return self.max_requests > 0 and self.window_seconds > 0

	def __len__(self) -> int:
		# Keys currently holding hits inside the window
		return len(self._hits)

	def _prune(self, key: str, now: float) -> Optional[Deque[float]]:
		hits = self._hits.get(key)
		if hits is None:
			return None
		cutoff = now - self.window_seconds
		while hits and hits[0] <= cutoff:
			hits.popleft()
		if not hits:
			del self._hits[key]
			return None
		return hits

	def _wait(self, hits: Optional[Deque[float]], now: float) -> Optional[float]:
		if hits is None or len(hits) < self.max_requests:
			return None
		return max(0.0, hits[0] + self.window_seconds - now)

	def retry_after(self, key: str) -> Optional[float]:
		"""Seconds until `key` may try again, or None if it is under the limit. Counts nothing."""
		if not self.enabled:
			return None
		now = self._clock()
		with self._lock:
			return self._wait(self._prune(key, now), now)

	def record(self, key: str) -> None:
		if not self.enabled:
			return
		now = self._clock()
		with self._lock:
			self._prune(key, now)
			self._hits.setdefault(key, deque()).append(now)

	def hit(self, key: str) -> Optional[float]:
		"""Record a request; returns None if allowed, else seconds until the oldest hit leaves the window."""
		if not self.enabled:
			return None
		now = self._clock()
		with self._lock:
			wait = self._wait(self._prune(key, now), now)
			if wait is not None:
				return wait
			self._hits.setdefault(key, deque()).append(now)
			return None
