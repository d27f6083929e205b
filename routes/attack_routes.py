from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from config import Config
from services.cowrie_ingest import ingest_cowrie_log
from services.event_store import EventStore


logger = logging.getLogger(__name__)


def create_attack_blueprint(config: Config, store: EventStore) -> Blueprint:
	bp = Blueprint("attacks", __name__)

	@bp.route("/health")
	def health():
		return jsonify({"status": "ok"})

	@bp.route("/api/attacks")
	def api_attacks():
		try:
			return jsonify(store.all_commands())
		except Exception as exc:
			logger.exception("DB error in /api/attacks")
			return jsonify({"error": "Failed to fetch attacks", "detail": str(exc)}), 500

	@bp.route("/api/commands")
	def api_commands():
		try:
			limit = int(request.args.get("limit", "50"))
		except Exception:
			limit = 50
		limit = max(1, min(limit, 5000))
		try:
			return jsonify(store.recent_commands(limit))
		except Exception as exc:
			logger.exception("DB error in /api/commands")
			return jsonify({"error": "Failed to fetch commands", "detail": str(exc)}), 500

	@bp.route("/api/ingest", methods=["POST"])
	def api_ingest():
		try:
			result = ingest_cowrie_log(store, config.cowrie_log_path)
		except Exception as exc:
			logger.exception("Cowrie log ingest failed")
			return jsonify({"error": "Failed to ingest Cowrie log", "detail": str(exc)}), 500
		return jsonify(result), 200

	return bp
