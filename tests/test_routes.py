import pytest

from app import create_app
from services.geo import GeoResolver


@pytest.fixture
def app(make_config, fake_reader, tmp_path):
	config = make_config()
	return create_app(config, geo=GeoResolver(tmp_path / "none.mmdb", reader=fake_reader))


@pytest.fixture
def client(app):
	return app.test_client()


def test_health(client):
	assert client.get("/health").get_json() == {"status": "ok"}


def test_attacks_lists_all_commands_newest_first(app, client):
	store = app.config["EVENT_STORE"]
	store.insert_command("s", "2024-01-01T00:00:00Z", "8.8.8.8", "first")
	store.insert_command("s", "2024-01-01T00:10:00Z", "8.8.8.8", "second")
	resp = client.get("/api/attacks")
	assert resp.status_code == 200
	assert [r["command"] for r in resp.get_json()] == ["second", "first"]


def test_attacks_reports_store_failure(app, client, monkeypatch):
	store = app.config["EVENT_STORE"]

	def broken():
		raise RuntimeError("database is locked")

	monkeypatch.setattr(store, "all_commands", broken)
	resp = client.get("/api/attacks")
	assert resp.status_code == 500
	assert resp.get_json() == {"error": "Failed to fetch attacks", "detail": "database is locked"}


def test_commands_limit_is_clamped(app, client):
	store = app.config["EVENT_STORE"]
	for second in range(3):
		store.insert_command("s", f"2024-01-01T00:00:0{second}Z", "8.8.8.8", f"c{second}")
	assert len(client.get("/api/commands?limit=2").get_json()) == 2
	assert len(client.get("/api/commands?limit=0").get_json()) == 1
	assert len(client.get("/api/commands?limit=abc").get_json()) == 3


def test_ingest_endpoint_reads_cowrie_log(app, client):
	config = app.config["APP_CONFIG"]
	config.cowrie_log_path.write_text(
		'{"eventid": "cowrie.login.failed", "src_ip": "8.8.8.8", "username": "pi", "password": "raspberry", "timestamp": "2024-01-01T00:00:00Z"}\n',
		encoding="utf-8",
	)
	resp = client.post("/api/ingest")
	assert resp.status_code == 200
	assert resp.get_json() == {"commands": 0, "auth_attempts": 1}


def test_replay_stream_without_data_closes_at_once(client):
	resp = client.get("/api/attacks/replay")
	assert resp.status_code == 200
	assert resp.headers["Content-Type"].startswith("text/event-stream")
	assert resp.headers["Cache-Control"] == "no-cache"
	assert resp.get_data() == b""
