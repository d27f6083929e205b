from __future__ import annotations

import datetime
import itertools
import json
import logging
import threading
import time
from typing import Any, Dict, Generator, List, Optional, Tuple

from services.event_store import EventStore, parse_time
from services.geo import GeoResolver


logger = logging.getLogger(__name__)

_connection_ids = itertools.count(1)

KEEPALIVE_FRAME = ": keepalive\n\n"


def format_sse(batch: List[Dict[str, Any]]) -> str:
	return f"data: {json.dumps(batch, ensure_ascii=False, default=str)}\n\n"


def unwrap_rows(result: Any) -> List[Dict[str, Any]]:
	"""Accept a bare row list or a ``{"rows": [...]}`` envelope."""
	if isinstance(result, list):
		return result
	if isinstance(result, dict):
		rows = result.get("rows")
		return rows if isinstance(rows, list) else []
	return []


class StreamConnection:
	"""Lifecycle of one streaming client: open -> active -> closing -> closed.

	The cancellation token is a ``threading.Event`` so a sleeping tailer
	wakes as soon as the connection is closed. Frames are produced under
	the same lock that ``close()`` takes, so nothing is produced once the
	connection has started closing.
	"""

	OPEN = "open"
	ACTIVE = "active"
	CLOSING = "closing"
	CLOSED = "closed"

	def __init__(self, name: str = "stream"):
		self.name = name
		self.conn_id = next(_connection_ids)
		self.state = self.OPEN
		self.close_reason: Optional[str] = None
		self._cancel = threading.Event()
		self._lock = threading.Lock()

	@property
	def closed(self) -> bool:
		return self._cancel.is_set()

	def activate(self) -> None:
		with self._lock:
			if self.state == self.OPEN:
				self.state = self.ACTIVE
		logger.info("Stream %s#%d active", self.name, self.conn_id)

	def wait(self, seconds: float) -> bool:
		"""Sleep between cycles; True means the connection was cancelled."""
		return self._cancel.wait(seconds)

	def keepalive(self) -> Optional[str]:
		with self._lock:
			return None if self._cancel.is_set() else KEEPALIVE_FRAME

	def frame(self, batch: List[Dict[str, Any]]) -> Optional[str]:
		with self._lock:
			if self._cancel.is_set() or not batch:
				return None
			return format_sse(batch)

	def close(self, reason: str = "client disconnected") -> bool:
		with self._lock:
			if self.state in (self.CLOSING, self.CLOSED):
				return False
			self.state = self.CLOSING
			self.close_reason = reason
			self._cancel.set()
			self.state = self.CLOSED
		logger.info("Stream %s#%d closed (%s)", self.name, self.conn_id, reason)
		return True


class Tailer:
	"""Poll loop turning new store rows into SSE frames.

	Subclasses implement ``poll()``, which runs one cycle and advances the
	cursor. ``start()`` returns False when there is nothing to stream at all.
	An idle stream still writes a keepalive comment every
	``keepalive_interval`` seconds; that write is where a vanished client is
	noticed.
	"""

	name = "tailer"

	def __init__(self, store: EventStore, interval: float, keepalive_interval: float = 15.0):
		self.store = store
		self.interval = interval
		self.keepalive_interval = keepalive_interval

	def start(self) -> bool:
		return True

	def poll(self) -> List[Dict[str, Any]]:
		raise NotImplementedError

	def stream(self, conn: StreamConnection) -> Generator[str, None, None]:
		reason = "client disconnected"
		try:
			try:
				ready = self.start()
			except Exception:
				logger.exception("%s failed to start", self.name)
				reason = "start failed"
				return
			if not ready:
				reason = "no data"
				return
			conn.activate()
			last_send = time.monotonic()
			while not conn.closed:
				try:
					batch = self.poll()
				except Exception:
					logger.exception("%s poll failed; closing stream %s#%d", self.name, conn.name, conn.conn_id)
					reason = "fetch error"
					return
				frame = conn.frame(batch)
				if frame is not None:
					logger.debug("%s emitting %d rows", self.name, len(batch))
					yield frame
					last_send = time.monotonic()
				elif time.monotonic() - last_send >= self.keepalive_interval:
					ping = conn.keepalive()
					if ping is not None:
						yield ping
						last_send = time.monotonic()
				if conn.wait(self.interval):
					break
		finally:
			conn.close(reason)


class AuthAttemptTailer(Tailer):
	"""Login attempts keyed by an exclusive id cursor."""

	name = "auth-attempts"

	def __init__(self, store: EventStore, interval: float = 3.0, keepalive_interval: float = 15.0):
		super().__init__(store, interval, keepalive_interval)
		self.last_id = 0

	def poll(self) -> List[Dict[str, Any]]:
		rows = unwrap_rows(self.store.auth_attempts_after(self.last_id))
		if rows:
			max_id = max(int(r.get("id") or 0) for r in rows)
			if max_id > self.last_id:
				self.last_id = max_id
		return rows


class CommandTailer(Tailer):
	"""Geo-annotated commands keyed by a (ts, id) cursor.

	The first cycle sends the newest ``initial_batch_size`` rows as backlog.
	After that only rows strictly past the cursor are fetched; the id breaks
	ties between rows sharing a timestamp.
	"""

	name = "commands"

	def __init__(
		self,
		store: EventStore,
		geo: GeoResolver,
		interval: float = 3.0,
		initial_batch_size: int = 20,
		keepalive_interval: float = 15.0,
	):
		super().__init__(store, interval, keepalive_interval)
		self.geo = geo
		self.initial_batch_size = initial_batch_size
		self.cursor: Optional[Tuple[str, int]] = None

	def poll(self) -> List[Dict[str, Any]]:
		if self.cursor is None:
			rows = unwrap_rows(self.store.latest_commands(self.initial_batch_size))
		else:
			rows = unwrap_rows(self.store.commands_after(*self.cursor))
		if not rows:
			return rows
		self.geo.annotate(rows)
		newest = max((r["ts"], int(r["id"])) for r in rows)
		if self.cursor is None or newest > self.cursor:
			self.cursor = newest
		return rows


class ReplayTailer(Tailer):
	"""Walks historical commands in fixed windows on a faster virtual clock."""

	name = "replay"

	def __init__(self, store: EventStore, interval: float = 10.0, window_seconds: int = 60, keepalive_interval: float = 15.0):
		super().__init__(store, interval, keepalive_interval)
		self.window = datetime.timedelta(seconds=window_seconds)
		self.cursor_ts: Optional[datetime.datetime] = None

	def start(self) -> bool:
		self.cursor_ts = parse_time(self.store.min_command_ts())
		if self.cursor_ts is None:
			logger.info("Replay has no stored commands to walk")
			return False
		logger.info("Replay anchored at %s", self.cursor_ts.isoformat())
		return True

	def next_window(self) -> Tuple[datetime.datetime, datetime.datetime]:
		if self.cursor_ts is None:
			raise RuntimeError("replay cursor is not anchored; call start() first")
		return self.cursor_ts, self.cursor_ts + self.window

	def poll(self) -> List[Dict[str, Any]]:
		lo, hi = self.next_window()
		rows = unwrap_rows(self.store.commands_in_window(lo, hi))
		self.cursor_ts = hi
		return rows
