from __future__ import annotations

import json
import logging
import queue
import threading
import time
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional, Tuple

import requests

from config import Config
from services.live_stats import LiveStats


logger = logging.getLogger(__name__)


def parse_sse_lines(lines: Iterable[Optional[str]]) -> Generator[List[Dict[str, Any]], None, None]:
	"""Yield the JSON array carried by each SSE message.

	Comment lines (keep-alives) are ignored, and so are messages whose
	payload is not a JSON array.
	"""
	data: List[str] = []
	for line in lines:
		if line is None:
			continue
		if line == "":
			if data:
				payload = "\n".join(data)
				data = []
				try:
					batch = json.loads(payload)
				except ValueError:
					logger.warning("Dropping malformed SSE payload: %.100s", payload)
					continue
				if isinstance(batch, list):
					yield batch
			continue
		if line.startswith(":"):
			continue
		if line.startswith("data:"):
			value = line[5:]
			data.append(value[1:] if value.startswith(" ") else value)
	if data:
		try:
			batch = json.loads("\n".join(data))
		except ValueError:
			return
		if isinstance(batch, list):
			yield batch


class SseSubscription:
	"""One streaming GET read on a background thread into a shared queue."""

	def __init__(
		self,
		url: str,
		source: str,
		out: "queue.Queue[Tuple[SseSubscription, Optional[List[Dict[str, Any]]]]]",
		session: Optional[requests.Session] = None,
		timeout: Tuple[float, float] = (5, 3600),
	):
		self.url = url
		self.source = source
		self.out = out
		self.session = session or requests.Session()
		self.timeout = timeout
		self.done = False
		self._resp: Optional[requests.Response] = None
		self._resp_lock = threading.Lock()
		self._stop = threading.Event()
		self._thread: Optional[threading.Thread] = None

	def start(self) -> "SseSubscription":
		self._thread = threading.Thread(target=self._reader, name=f"sse-{self.source}", daemon=True)
		self._thread.start()
		return self

	def _reader(self) -> None:
		try:
			resp = self.session.get(self.url, stream=True, timeout=self.timeout)
			with self._resp_lock:
				if self._stop.is_set():
					resp.close()
					return
				self._resp = resp
			resp.raise_for_status()
			for batch in parse_sse_lines(resp.iter_lines(decode_unicode=True)):
				if self._stop.is_set():
					break
				self.out.put((self, batch))
		except requests.RequestException as exc:
			if not self._stop.is_set():
				logger.warning("%s stream %s failed: %s", self.source, self.url, exc)
		except Exception:
			if not self._stop.is_set():
				logger.exception("%s stream %s failed", self.source, self.url)
		finally:
			self.done = True
			self.out.put((self, None))

	def close(self) -> None:
		with self._resp_lock:
			if self._stop.is_set():
				return
			self._stop.set()
			resp = self._resp
		if resp is not None:
			resp.close()


class ModeArbiter:
	"""Chooses between the live feed and historical replay.

	Falls back to replay when the live feed has been quiet for
	``liveness_timeout`` seconds and returns to live on the next live batch.
	"""

	LIVE = "live"
	REPLAY = "replay"

	def __init__(self, liveness_timeout: float = 30.0, clock: Callable[[], float] = time.monotonic):
		self.liveness_timeout = liveness_timeout
		self.clock = clock
		self.mode = self.LIVE
		self._last_live = clock()

	def on_live_batch(self) -> bool:
		self._last_live = self.clock()
		if self.mode == self.REPLAY:
			self.mode = self.LIVE
			logger.info("Live traffic resumed; leaving replay")
			return True
		return False

	def check(self) -> bool:
		if self.mode == self.LIVE and self.clock() - self._last_live >= self.liveness_timeout:
			self.mode = self.REPLAY
			logger.info("No live batch for %.0fs; switching to replay", self.liveness_timeout)
			return True
		return False


class DashboardConsumer:
	"""Feeds LiveStats from the live stream, with replay while live is idle.

	The live subscription stays open in both modes so live traffic is
	noticed while replaying. Ended subscriptions are reopened on the next
	check.
	"""

	def __init__(
		self,
		config: Config,
		stats: Optional[LiveStats] = None,
		live_path: str = "/api/commands/stream",
		replay_path: str = "/api/attacks/replay",
		session: Optional[requests.Session] = None,
		clock: Callable[[], float] = time.monotonic,
	):
		self.config = config
		self.stats = stats or LiveStats(recent_limit=config.recent_limit)
		self.live_url = f"{config.stream_base_url}{live_path}"
		self.replay_url = f"{config.stream_base_url}{replay_path}"
		self.session = session or requests.Session()
		self.arbiter = ModeArbiter(config.liveness_timeout, clock=clock)
		self.events: "queue.Queue[Tuple[SseSubscription, Optional[List[Dict[str, Any]]]]]" = queue.Queue()
		self.live: Optional[SseSubscription] = None
		self.replay: Optional[SseSubscription] = None

	def _open(self, url: str, source: str) -> SseSubscription:
		logger.info("Opening %s stream %s", source, url)
		return SseSubscription(url, source, self.events, session=self.session).start()

	def _close_replay(self) -> None:
		if self.replay is not None:
			self.replay.close()
			self.replay = None

	def handle(self, sub: SseSubscription, batch: Optional[List[Dict[str, Any]]]) -> bool:
		"""Apply one queued item; True when the aggregates changed."""
		if batch is None:
			if sub is self.live:
				self.live = None
			elif sub is self.replay:
				self.replay = None
			return False
		if sub is self.live:
			if self.arbiter.on_live_batch():
				self._close_replay()
			self.stats.add_batch(batch)
			return True
		if sub is self.replay and self.arbiter.mode == ModeArbiter.REPLAY:
			self.stats.add_batch(batch)
			return True
		return False

	def tick(self) -> None:
		"""Periodic check: mode switch and resubscription."""
		self.arbiter.check()
		if self.live is None:
			self.live = self._open(self.live_url, "live")
		if self.arbiter.mode == ModeArbiter.REPLAY and self.replay is None:
			self.replay = self._open(self.replay_url, "replay")

	def run(
		self,
		on_update: Optional[Callable[[Dict[str, Any]], None]] = None,
		stop: Optional[threading.Event] = None,
	) -> None:
		stop = stop or threading.Event()
		self.tick()
		next_check = time.monotonic() + self.config.mode_check_interval
		try:
			while not stop.is_set():
				timeout = max(0.0, next_check - time.monotonic())
				try:
					sub, batch = self.events.get(timeout=timeout)
				except queue.Empty:
					pass
				else:
					if self.handle(sub, batch) and on_update:
						on_update(self.stats.snapshot())
				if time.monotonic() >= next_check:
					self.tick()
					next_check = time.monotonic() + self.config.mode_check_interval
		finally:
			self._close_replay()
			if self.live is not None:
				self.live.close()
				self.live = None
