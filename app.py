from __future__ import annotations

import atexit
import logging
from typing import Optional

from flask import Flask

from config import Config, load_config
from routes.attack_routes import create_attack_blueprint
from routes.stream_routes import create_stream_blueprint
from services.cowrie_ingest import ingest_cowrie_log
from services.event_store import EventStore
from services.geo import GeoResolver


def create_app(config: Optional[Config] = None, geo: Optional[GeoResolver] = None) -> Flask:
	config = config or load_config()
	app = Flask(__name__)

	store = EventStore(config.store_db_path)
	store.ensure_db()
	if config.ingest_on_start:
		try:
			ingest_cowrie_log(store, config.cowrie_log_path)
		except Exception:
			logging.getLogger(__name__).exception("Initial Cowrie log ingest failed")

	if geo is None:
		geo = GeoResolver(config.geoip_db_path, workers=config.geo_workers)
		atexit.register(geo.close)

	app.config["APP_CONFIG"] = config
	app.config["EVENT_STORE"] = store
	app.config["GEO_RESOLVER"] = geo

	app.register_blueprint(create_attack_blueprint(config, store))
	app.register_blueprint(create_stream_blueprint(config, store, geo))

	return app


if __name__ == "__main__":
	cfg = load_config()
	logging.basicConfig(level=cfg.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
	app = create_app(cfg)
	app.run(host=cfg.host, port=cfg.port, debug=cfg.flask_debug, threaded=True)
