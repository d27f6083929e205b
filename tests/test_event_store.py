import datetime

import pytest

from services.event_store import format_ts, parse_time


def test_format_ts_is_fixed_width_utc():
	assert format_ts("2024-01-01T00:00:00Z") == "2024-01-01T00:00:00.000000+00:00"
	assert format_ts("2024-01-01T07:30:00+07:00") == "2024-01-01T00:30:00.000000+00:00"
	naive = datetime.datetime(2024, 1, 1, 12, 0, 0, 250000)
	assert format_ts(naive) == "2024-01-01T12:00:00.250000+00:00"


def test_format_ts_rejects_garbage():
	with pytest.raises(ValueError):
		format_ts("yesterday")
	assert parse_time("not a time") is None
	assert parse_time(None) is None


def test_insert_and_read_back_command(store):
	row_id = store.insert_command("sess-1", "2024-01-01T00:00:05Z", "8.8.8.8", "uname -a", failed=None)
	rows = store.all_commands()
	assert rows == [
		{
			"id": str(row_id),
			"session_id": "sess-1",
			"ts": "2024-01-01T00:00:05.000000+00:00",
			"src_ip": "8.8.8.8",
			"command": "uname -a",
			"failed": None,
		},
	]


def test_failed_flag_is_tri_state(store):
	store.insert_command("s", "2024-01-01T00:00:01Z", "1.1.1.1", "ls", failed=True)
	store.insert_command("s", "2024-01-01T00:00:02Z", "1.1.1.1", "pwd", failed=False)
	store.insert_command("s", "2024-01-01T00:00:03Z", "1.1.1.1", "id")
	assert [r["failed"] for r in store.all_commands()] == [None, False, True]


def test_all_commands_newest_first(store):
	store.insert_command("s", "2024-01-01T00:00:02Z", "1.1.1.1", "b")
	store.insert_command("s", "2024-01-01T00:00:01Z", "1.1.1.1", "a")
	store.insert_command("s", "2024-01-01T00:00:03Z", "1.1.1.1", "c")
	assert [r["command"] for r in store.all_commands()] == ["c", "b", "a"]
	assert [r["command"] for r in store.recent_commands(2)] == ["c", "b"]


def test_latest_commands_returned_oldest_first(store):
	for second in range(25):
		store.insert_command("s", f"2024-01-01T00:00:{second:02d}Z", "1.1.1.1", f"cmd{second}")
	rows = store.latest_commands(20)
	assert len(rows) == 20
	assert rows[0]["command"] == "cmd5"
	assert rows[-1]["command"] == "cmd24"


def test_commands_after_breaks_timestamp_ties_by_id(store):
	first = store.insert_command("s", "2024-01-01T00:00:00Z", "1.1.1.1", "a")
	store.insert_command("s", "2024-01-01T00:00:00Z", "1.1.1.1", "b")
	store.insert_command("s", "2024-01-01T00:00:01Z", "1.1.1.1", "c")
	rows = store.commands_after("2024-01-01T00:00:00.000000+00:00", first)
	assert [r["command"] for r in rows] == ["b", "c"]


def test_commands_in_window_is_half_open(store):
	store.insert_command("s", "2024-01-01T00:00:00Z", "1.1.1.1", "start")
	store.insert_command("s", "2024-01-01T00:00:59.999999Z", "1.1.1.1", "edge")
	store.insert_command("s", "2024-01-01T00:01:00Z", "1.1.1.1", "next")
	rows = store.commands_in_window("2024-01-01T00:00:00Z", "2024-01-01T00:01:00Z")
	assert [r["command"] for r in rows] == ["start", "edge"]
	assert set(rows[0]) == {"ts", "src_ip", "command"}


def test_min_command_ts(store):
	assert store.min_command_ts() is None
	store.insert_command("s", "2024-03-01T00:00:00Z", "1.1.1.1", "x")
	store.insert_command("s", "2024-02-01T00:00:00Z", "1.1.1.1", "y")
	assert store.min_command_ts() == "2024-02-01T00:00:00.000000+00:00"


def test_auth_attempts_after_is_exclusive(store):
	ids = [
		store.insert_auth_attempt("1.1.1.1", "root", "toor", False, f"2024-01-01T00:00:0{i}Z")
		for i in range(3)
	]
	rows = store.auth_attempts_after(ids[0])
	assert [r["id"] for r in rows] == ids[1:]
	assert rows[0]["success"] is False
	assert store.auth_attempts_after(ids[-1]) == []


def test_append_batch_moves_offset_with_rows(store):
	store.append_batch(
		[{"session_id": "s", "ts": "2024-01-01T00:00:00Z", "src_ip": "1.1.1.1", "command": "ls"}],
		[{"src_ip": "1.1.1.1", "username": "root", "password": "x", "success": True, "ts": "2024-01-01T00:00:00Z"}],
		file_path="/var/log/cowrie.json",
		offset=128,
	)
	assert store.get_offset("/var/log/cowrie.json") == 128
	assert len(store.all_commands()) == 1
	assert store.auth_attempts_after(0)[0]["success"] is True
