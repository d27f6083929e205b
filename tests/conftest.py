from pathlib import Path
from types import SimpleNamespace

import geoip2.errors
import pytest

from config import Config
from services.event_store import EventStore


class FakeCityReader:
	"""Stands in for geoip2.database.Reader with a fixed address table."""

	def __init__(self, places=None):
		self.places = places or {}
		self.calls = []
		self.closed = 0

	def city(self, ip):
		self.calls.append(ip)
		if ip not in self.places:
			raise geoip2.errors.AddressNotFoundError(f"The address {ip} is not in the database.")
		lat, lon, country, region, city = self.places[ip]
		return SimpleNamespace(
			location=SimpleNamespace(latitude=lat, longitude=lon),
			country=SimpleNamespace(name=country),
			subdivisions=SimpleNamespace(most_specific=SimpleNamespace(name=region)),
			city=SimpleNamespace(name=city),
		)

	def close(self):
		self.closed += 1


PLACES = {
	"8.8.8.8": (37.751, -97.822, "United States", None, None),
	"45.33.32.156": (37.5625, -122.0004, "United States", "California", "Fremont"),
	"185.220.101.1": (52.5, 13.4, "Germany", "Berlin", "Berlin"),
}


@pytest.fixture
def fake_reader():
	return FakeCityReader(PLACES)


@pytest.fixture
def store(tmp_path):
	s = EventStore(tmp_path / "honeypot.db")
	s.ensure_db()
	return s


@pytest.fixture
def make_config(tmp_path):
	def _make(**overrides):
		values = dict(
			store_db_path=tmp_path / "honeypot.db",
			cowrie_log_path=tmp_path / "cowrie.json",
			geoip_db_path=tmp_path / "GeoLite2-City.mmdb",
			poll_interval=0.0,
			initial_batch_size=20,
			replay_window_seconds=60,
			replay_interval=0.0,
			keepalive_interval=15.0,
			geo_workers=4,
			ingest_on_start=False,
			stream_base_url="http://dashboard.test",
			liveness_timeout=30.0,
			mode_check_interval=5.0,
			recent_limit=30,
			host="127.0.0.1",
			port=5000,
			flask_debug=False,
			log_level="INFO",
		)
		values.update(overrides)
		return Config(**values)
	return _make
