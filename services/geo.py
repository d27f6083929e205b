from __future__ import annotations

import ipaddress
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional

import geoip2.database
import geoip2.errors


logger = logging.getLogger(__name__)

PRIVATE_NETWORKS = [
	ipaddress.ip_network("127.0.0.1/32"),
	ipaddress.ip_network("::1/128"),
	ipaddress.ip_network("10.0.0.0/8"),
	ipaddress.ip_network("192.168.0.0/16"),
	ipaddress.ip_network("172.16.0.0/12"),
]


def is_private_ip(ip: str) -> bool:
	try:
		addr = ipaddress.ip_address(ip)
	except ValueError:
		return False
	return any(addr.version == net.version and addr in net for net in PRIVATE_NETWORKS)


class GeoResolver:
	"""GeoLite2-City lookups with a per-instance result cache.

	The reader is opened on first use and released by ``close()``. Cached
	values include misses (``None``) so an address is resolved at most once
	per resolver, give or take a race between two threads asking at the
	same moment.
	"""

	def __init__(self, db_path: Path, reader: Any = None, workers: int = 8):
		self.db_path = Path(db_path)
		self.workers = max(1, workers)
		self._reader = reader
		self._reader_lock = threading.Lock()
		self._cache: Dict[str, Optional[Dict[str, Any]]] = {}
		self._cache_lock = threading.Lock()
		self._missing_db = False
		self._closed = False

	def _get_reader(self) -> Any:
		if self._reader is not None:
			return self._reader
		with self._reader_lock:
			if self._reader is None and not (self._missing_db or self._closed):
				if not self.db_path.exists():
					logger.warning("GeoIP database not found at %s; geo annotations disabled", self.db_path)
					self._missing_db = True
				else:
					self._reader = geoip2.database.Reader(str(self.db_path))
		return self._reader

	def lookup(self, ip: Optional[str]) -> Optional[Dict[str, Any]]:
		if not ip or is_private_ip(ip):
			return None
		with self._cache_lock:
			if ip in self._cache:
				return self._cache[ip]

		geo = self._resolve(ip)

		with self._cache_lock:
			return self._cache.setdefault(ip, geo)

	def _resolve(self, ip: str) -> Optional[Dict[str, Any]]:
		reader = self._get_reader()
		if reader is None:
			return None
		try:
			rec = reader.city(ip)
		except (geoip2.errors.AddressNotFoundError, ValueError):
			return None
		lat = rec.location.latitude
		lon = rec.location.longitude
		if lat is None or lon is None:
			return None
		return {
			"lat": lat,
			"lon": lon,
			"country": rec.country.name,
			"region": rec.subdivisions.most_specific.name,
			"city": rec.city.name,
		}

	def annotate(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
		"""Attach ``geo`` to every row, resolving addresses concurrently."""
		if not rows:
			return rows
		with ThreadPoolExecutor(max_workers=min(self.workers, len(rows))) as pool:
			geos = list(pool.map(lambda r: self.lookup(r.get("src_ip")), rows))
		for row, geo in zip(rows, geos):
			row["geo"] = geo
		return rows

	def close(self) -> None:
		with self._reader_lock:
			if self._closed:
				return
			self._closed = True
			reader, self._reader = self._reader, None
		if reader is not None and hasattr(reader, "close"):
			reader.close()
