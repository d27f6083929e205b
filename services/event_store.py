from __future__ import annotations

import datetime
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


UTC = datetime.timezone.utc

TimeLike = Union[str, datetime.datetime]


def parse_time(raw: Optional[str]) -> Optional[datetime.datetime]:
	"""Parse ISO-ish timestamps into UTC datetimes."""
	if not raw:
		return None
	try:
		value = raw.replace("Z", "+00:00") if raw.endswith("Z") else raw
		parsed = datetime.datetime.fromisoformat(value)
	except (TypeError, ValueError):
		return None
	if parsed.tzinfo is None:
		parsed = parsed.replace(tzinfo=UTC)
	return parsed.astimezone(UTC)


def format_ts(value: TimeLike) -> str:
	"""Render a timestamp in the fixed-width form the store compares as text."""
	if isinstance(value, str):
		parsed = parse_time(value)
		if parsed is None:
			raise ValueError(f"Invalid timestamp: {value!r}")
		value = parsed
	if value.tzinfo is None:
		value = value.replace(tzinfo=UTC)
	return value.astimezone(UTC).isoformat(timespec="microseconds")


def _tristate(value: Any) -> Optional[bool]:
	return None if value is None else bool(value)


def _command_params(session_id: str, ts: TimeLike, src_ip: str, command: str, failed: Optional[bool]) -> tuple:
	return (session_id, format_ts(ts), src_ip, command, None if failed is None else int(failed))


def _auth_params(src_ip: str, username: Optional[str], password: Optional[str], success: bool, ts: TimeLike) -> tuple:
	return (src_ip, username, password, int(bool(success)), format_ts(ts))


def _command_row(row: sqlite3.Row) -> Dict[str, Any]:
	return {
		"id": str(row["id"]),
		"session_id": row["session_id"],
		"ts": row["ts"],
		"src_ip": row["src_ip"],
		"command": row["command"],
		"failed": _tristate(row["failed"]),
	}


def _auth_row(row: sqlite3.Row) -> Dict[str, Any]:
	return {
		"id": row["id"],
		"src_ip": row["src_ip"],
		"username": row["username"],
		"password": row["password"],
		"success": bool(row["success"]),
		"ts": row["ts"],
	}


class EventStore:
	"""SQLite-backed store of Cowrie command executions and login attempts.

	Both event tables are append-only. Tailers read them through the
	cursor-bounded queries below; nothing here updates or deletes events.
	"""

	COMMAND_COLUMNS = "id, session_id, ts, src_ip, command, failed"
	AUTH_COLUMNS = "id, src_ip, username, password, success, ts"
	INSERT_COMMAND = "INSERT INTO cowrie_commands (session_id, ts, src_ip, command, failed) VALUES (?, ?, ?, ?, ?)"
	INSERT_AUTH = "INSERT INTO cowrie_auth_attempts (src_ip, username, password, success, ts) VALUES (?, ?, ?, ?, ?)"

	def __init__(self, db_path: Path):
		self.db_path = Path(db_path)

	def get_db_connection(self) -> sqlite3.Connection:
		conn = sqlite3.connect(self.db_path)
		conn.row_factory = sqlite3.Row
		return conn

	def ensure_db(self) -> None:
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		conn = sqlite3.connect(self.db_path)
		try:
			conn.execute("PRAGMA journal_mode=WAL;")
			conn.execute(
				"""
				CREATE TABLE IF NOT EXISTS cowrie_commands (
					id INTEGER PRIMARY KEY AUTOINCREMENT,
					session_id TEXT NOT NULL,
					ts TEXT NOT NULL,
					src_ip TEXT NOT NULL,
					command TEXT NOT NULL,
					failed INTEGER
				)
				"""
			)
			conn.execute("CREATE INDEX IF NOT EXISTS idx_cowrie_commands_ts ON cowrie_commands(ts)")
			conn.execute(
				"""
				CREATE TABLE IF NOT EXISTS cowrie_auth_attempts (
					id INTEGER PRIMARY KEY AUTOINCREMENT,
					src_ip TEXT NOT NULL,
					username TEXT,
					password TEXT,
					success INTEGER NOT NULL,
					ts TEXT NOT NULL
				)
				"""
			)
			conn.execute("CREATE INDEX IF NOT EXISTS idx_cowrie_auth_attempts_ts ON cowrie_auth_attempts(ts)")
			conn.execute(
				"""
				CREATE TABLE IF NOT EXISTS log_offsets (
					file_path TEXT PRIMARY KEY,
					offset INTEGER DEFAULT 0
				)
				"""
			)
			conn.commit()
		finally:
			conn.close()

	# -- writes --

	def insert_command(
		self,
		session_id: str,
		ts: TimeLike,
		src_ip: str,
		command: str,
		failed: Optional[bool] = None,
	) -> int:
		conn = self.get_db_connection()
		try:
			cur = conn.execute(self.INSERT_COMMAND, _command_params(session_id, ts, src_ip, command, failed))
			conn.commit()
			return cur.lastrowid
		finally:
			conn.close()

	def insert_auth_attempt(
		self,
		src_ip: str,
		username: Optional[str],
		password: Optional[str],
		success: bool,
		ts: TimeLike,
	) -> int:
		conn = self.get_db_connection()
		try:
			cur = conn.execute(self.INSERT_AUTH, _auth_params(src_ip, username, password, success, ts))
			conn.commit()
			return cur.lastrowid
		finally:
			conn.close()

	def append_batch(
		self,
		commands: List[Dict[str, Any]],
		auth_attempts: List[Dict[str, Any]],
		file_path: Optional[str] = None,
		offset: Optional[int] = None,
	) -> None:
		"""Append parsed log rows and move the file offset in one transaction."""
		conn = self.get_db_connection()
		try:
			conn.executemany(
				self.INSERT_COMMAND,
				[
					_command_params(c["session_id"], c["ts"], c["src_ip"], c["command"], c.get("failed"))
					for c in commands
				],
			)
			conn.executemany(
				self.INSERT_AUTH,
				[
					_auth_params(a["src_ip"], a.get("username"), a.get("password"), a["success"], a["ts"])
					for a in auth_attempts
				],
			)
			if file_path is not None and offset is not None:
				self.update_offset(conn, file_path, offset)
			conn.commit()
		except Exception:
			conn.rollback()
			raise
		finally:
			conn.close()

	# -- tail queries --

	def min_command_ts(self) -> Optional[str]:
		conn = self.get_db_connection()
		try:
			row = conn.execute("SELECT MIN(ts) FROM cowrie_commands").fetchone()
			return row[0] if row else None
		finally:
			conn.close()

	def commands_in_window(self, lo: TimeLike, hi: TimeLike) -> List[Dict[str, Any]]:
		conn = self.get_db_connection()
		try:
			rows = conn.execute(
				"SELECT ts, src_ip, command FROM cowrie_commands WHERE ts >= ? AND ts < ? ORDER BY ts ASC, id ASC",
				(format_ts(lo), format_ts(hi)),
			).fetchall()
			return [{"ts": r["ts"], "src_ip": r["src_ip"], "command": r["command"]} for r in rows]
		finally:
			conn.close()

	def auth_attempts_after(self, last_id: int) -> List[Dict[str, Any]]:
		conn = self.get_db_connection()
		try:
			rows = conn.execute(
				f"SELECT {self.AUTH_COLUMNS} FROM cowrie_auth_attempts WHERE id > ? ORDER BY ts ASC, id ASC",
				(last_id,),
			).fetchall()
			return [_auth_row(r) for r in rows]
		finally:
			conn.close()

	def latest_commands(self, limit: int) -> List[Dict[str, Any]]:
		"""Newest ``limit`` commands, returned oldest-first."""
		conn = self.get_db_connection()
		try:
			rows = conn.execute(
				f"SELECT {self.COMMAND_COLUMNS} FROM cowrie_commands ORDER BY ts DESC, id DESC LIMIT ?",
				(limit,),
			).fetchall()
			return [_command_row(r) for r in reversed(rows)]
		finally:
			conn.close()

	def commands_after(self, ts: str, row_id: int) -> List[Dict[str, Any]]:
		"""Commands strictly after the (ts, id) cursor, ascending."""
		conn = self.get_db_connection()
		try:
			rows = conn.execute(
				f"""
				SELECT {self.COMMAND_COLUMNS} FROM cowrie_commands
				WHERE ts > ? OR (ts = ? AND id > ?)
				ORDER BY ts ASC, id ASC
				""",
				(ts, ts, row_id),
			).fetchall()
			return [_command_row(r) for r in rows]
		finally:
			conn.close()

	# -- plain reads --

	def all_commands(self) -> List[Dict[str, Any]]:
		conn = self.get_db_connection()
		try:
			rows = conn.execute(
				f"SELECT {self.COMMAND_COLUMNS} FROM cowrie_commands ORDER BY ts DESC, id DESC"
			).fetchall()
			return [_command_row(r) for r in rows]
		finally:
			conn.close()

	def recent_commands(self, limit: int = 50) -> List[Dict[str, Any]]:
		conn = self.get_db_connection()
		try:
			rows = conn.execute(
				f"SELECT {self.COMMAND_COLUMNS} FROM cowrie_commands ORDER BY ts DESC, id DESC LIMIT ?",
				(limit,),
			).fetchall()
			return [_command_row(r) for r in rows]
		finally:
			conn.close()

	# -- ingest bookkeeping --

	def get_offset(self, file_path: str) -> int:
		conn = self.get_db_connection()
		try:
			row = conn.execute("SELECT offset FROM log_offsets WHERE file_path = ?", (file_path,)).fetchone()
			return row[0] if row else 0
		finally:
			conn.close()

	def update_offset(self, conn: sqlite3.Connection, file_path: str, offset: int) -> None:
		conn.execute(
			"INSERT OR REPLACE INTO log_offsets (file_path, offset) VALUES (?, ?)",
			(file_path, offset),
		)
