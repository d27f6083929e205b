import os
from dataclasses import dataclass
from pathlib import Path


def _bool(value: str) -> bool:
	return value.lower() in {"1", "true", "yes", "on"}


@dataclass
class Config:
	store_db_path: Path
	cowrie_log_path: Path
	geoip_db_path: Path
	poll_interval: float
	initial_batch_size: int
	replay_window_seconds: int
	replay_interval: float
	keepalive_interval: float
	geo_workers: int
	ingest_on_start: bool
	stream_base_url: str
	liveness_timeout: float
	mode_check_interval: float
	recent_limit: int
	host: str
	port: int
	flask_debug: bool
	log_level: str


def load_config() -> Config:
	"""Load configuration from environment with sane defaults."""
	cwd = Path.cwd()
	cowrie_log_env = os.getenv("COWRIE_LOG_PATH")
	if not cowrie_log_env:
		local_log = cwd / "cowrie.json"
		cowrie_log_env = (
			str(local_log)
			if local_log.exists()
			else str(Path.home() / "cowrie" / "var" / "log" / "cowrie" / "cowrie.json")
		)
	return Config(
		store_db_path=Path(os.getenv("STORE_DB_PATH", "data/honeypot.db")).expanduser(),
		cowrie_log_path=Path(cowrie_log_env).expanduser(),
		geoip_db_path=Path(os.getenv("GEOIP_DB_PATH", "data/GeoLite2-City.mmdb")).expanduser(),
		poll_interval=float(os.getenv("POLL_INTERVAL", "3")),
		initial_batch_size=int(os.getenv("INITIAL_BATCH_SIZE", "20")),
		replay_window_seconds=int(os.getenv("REPLAY_WINDOW_SECONDS", "60")),
		replay_interval=float(os.getenv("REPLAY_INTERVAL", "10")),
		keepalive_interval=float(os.getenv("KEEPALIVE_INTERVAL", "15")),
		geo_workers=int(os.getenv("GEO_WORKERS", "8")),
		ingest_on_start=_bool(os.getenv("INGEST_ON_START", "true")),
		stream_base_url=os.getenv("STREAM_BASE_URL", "http://127.0.0.1:5000").rstrip("/"),
		liveness_timeout=float(os.getenv("LIVENESS_TIMEOUT", "30")),
		mode_check_interval=float(os.getenv("MODE_CHECK_INTERVAL", "5")),
		recent_limit=int(os.getenv("RECENT_LIMIT", "30")),
		host=os.getenv("HOST", "0.0.0.0"),
		port=int(os.getenv("PORT", "5000")),
		flask_debug=_bool(os.getenv("FLASK_DEBUG", "false")),
		log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
	)
