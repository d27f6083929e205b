from __future__ import annotations

from flask import Blueprint, Response, stream_with_context

from config import Config
from services.event_store import EventStore
from services.geo import GeoResolver
from services.tailer import AuthAttemptTailer, CommandTailer, ReplayTailer, StreamConnection, Tailer


SSE_HEADERS = {
	"Cache-Control": "no-cache",
	"Connection": "keep-alive",
	"X-Accel-Buffering": "no",
	"Content-Type": "text/event-stream",
}


def sse_response(tailer: Tailer) -> Response:
	conn = StreamConnection(tailer.name)
	return Response(stream_with_context(tailer.stream(conn)), headers=SSE_HEADERS)


def create_stream_blueprint(config: Config, store: EventStore, geo: GeoResolver) -> Blueprint:
	bp = Blueprint("streams", __name__)

	@bp.route("/api/attacks/stream")
	def attacks_stream():
		return sse_response(AuthAttemptTailer(store, interval=config.poll_interval, keepalive_interval=config.keepalive_interval))

	@bp.route("/api/commands/stream")
	def commands_stream():
		return sse_response(
			CommandTailer(
				store,
				geo,
				interval=config.poll_interval,
				initial_batch_size=config.initial_batch_size,
				keepalive_interval=config.keepalive_interval,
			),
		)

	@bp.route("/api/attacks/replay")
	def attacks_replay():
		return sse_response(
			ReplayTailer(
				store,
				interval=config.replay_interval,
				window_seconds=config.replay_window_seconds,
				keepalive_interval=config.keepalive_interval,
			),
		)

	return bp
