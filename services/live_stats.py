from __future__ import annotations

import time
from collections import OrderedDict, deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional


def event_key(row: Dict[str, Any]) -> str:
	if row.get("id") is not None:
		return str(row["id"])
	return f"{row.get('ts')}|{row.get('src_ip')}|{row.get('command')}"


def is_failure(row: Dict[str, Any]) -> bool:
	"""Failed commands, and login attempts that did not succeed."""
	if row.get("failed"):
		return True
	return row.get("success") is False


class LiveStats:
	"""Rolling dashboard aggregates.

	Only the newest ``max_events`` distinct events are retained, for
	deduplication, ``unique_ips`` and ``recent``. ``total_events_seen`` and
	``failure_rate`` are running counters over every distinct event, so they
	survive eviction. At most ``max_points`` attacker points are kept, the
	most recently seen ones.
	"""

	def __init__(
		self,
		recent_limit: int = 30,
		max_points: int = 250,
		max_events: int = 1000,
		clock: Callable[[], float] = time.time,
	):
		self.recent_limit = recent_limit
		self.max_points = max_points
		self.max_events = max(max_events, recent_limit, 1)
		self.clock = clock
		self._events: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
		self._arrivals: Deque[float] = deque()
		self._points: Dict[str, Dict[str, Any]] = {}
		self.total_seen = 0
		self.failures_seen = 0
		self.last_seen: Optional[str] = None

	def add_batch(self, rows: Iterable[Dict[str, Any]]) -> int:
		rows = [r for r in rows if isinstance(r, dict)]
		if not rows:
			return 0
		now = self.clock()
		added = 0
		for row in rows:
			key = event_key(row)
			if key not in self._events:
				added += 1
				self.total_seen += 1
				if is_failure(row):
					self.failures_seen += 1
			self._events[key] = row
			self._events.move_to_end(key)
			self._arrivals.append(now)
			self._update_point(row)
		while len(self._events) > self.max_events:
			self._events.popitem(last=False)
		self.last_seen = rows[-1].get("ts") or self.last_seen
		self._trim_arrivals(now)
		return added

	def _update_point(self, row: Dict[str, Any]) -> None:
		geo = row.get("geo") or {}
		if geo.get("lat") is None or geo.get("lon") is None:
			return
		ip = row.get("src_ip")
		ts = row.get("ts") or ""
		existing = self._points.get(ip)
		if existing and (existing.get("ts") or "") >= ts:
			return
		place = ", ".join(p for p in (geo.get("city"), geo.get("region"), geo.get("country")) if p)
		self._points[ip] = {
			"ip": ip,
			"lat": geo["lat"],
			"lon": geo["lon"],
			"label": f"Attacker ({ip}) • {place}" if place else f"Attacker ({ip})",
			"ts": ts,
		}
		if len(self._points) > self.max_points:
			oldest = min(self._points, key=lambda k: self._points[k].get("ts") or "")
			del self._points[oldest]

	def _trim_arrivals(self, now: float) -> None:
		cutoff = now - 60.0
		while self._arrivals and self._arrivals[0] < cutoff:
			self._arrivals.popleft()

	def retained(self) -> int:
		return len(self._events)

	def map_points(self) -> List[Dict[str, Any]]:
		return sorted(self._points.values(), key=lambda p: p.get("ts") or "", reverse=True)

	def snapshot(self) -> Dict[str, Any]:
		self._trim_arrivals(self.clock())
		ordered = sorted(self._events.values(), key=lambda r: r.get("ts") or "")
		total = self.total_seen
		return {
			"total_events_seen": total,
			"unique_ips": len({r.get("src_ip") for r in ordered}),
			"failure_rate": round(self.failures_seen / total * 100, 2) if total else 0.0,
			"events_per_minute": len(self._arrivals),
			"last_seen": self.last_seen,
			"recent": ordered[-self.recent_limit:] if self.recent_limit else [],
			"map_points": self.map_points(),
		}
