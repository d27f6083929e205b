from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from services.event_store import EventStore, format_ts, parse_time


logger = logging.getLogger(__name__)

LOGIN_EVENTS = {"cowrie.login.success": True, "cowrie.login.failed": False}
COMMAND_OUTCOMES = {"cowrie.command.failed": True, "cowrie.command.success": False}


def parse_cowrie_lines(lines: List[str]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
	"""Split Cowrie JSON log lines into command rows and login attempts.

	``cowrie.command.input`` creates the command row. A later
	``cowrie.command.failed``/``success`` for the same session and input
	in the same chunk fills in its outcome; otherwise it stays unknown.
	"""
	commands: List[Dict[str, Any]] = []
	auth_attempts: List[Dict[str, Any]] = []
	pending: Dict[Tuple[str, str], Dict[str, Any]] = {}
	skipped = 0
	for line in lines:
		raw = line.strip()
		if not raw:
			continue
		try:
			entry = json.loads(raw)
		except ValueError:
			skipped += 1
			continue
		if not isinstance(entry, dict):
			skipped += 1
			continue
		event_id = entry.get("eventid") or ""
		ts = parse_time(entry.get("timestamp") or entry.get("time"))
		src_ip = entry.get("src_ip") or entry.get("srcip")
		if ts is None or not src_ip:
			skipped += 1
			continue

		if event_id == "cowrie.command.input":
			row = {
				"session_id": entry.get("session") or "",
				"ts": format_ts(ts),
				"src_ip": src_ip,
				"command": entry.get("input") or "",
				"failed": None,
			}
			commands.append(row)
			pending[(row["session_id"], row["command"])] = row
		elif event_id in COMMAND_OUTCOMES:
			row = pending.pop((entry.get("session") or "", entry.get("input") or ""), None)
			if row is not None:
				row["failed"] = COMMAND_OUTCOMES[event_id]
		elif event_id in LOGIN_EVENTS:
			auth_attempts.append(
				{
					"src_ip": src_ip,
					"username": entry.get("username"),
					"password": entry.get("password"),
					"success": LOGIN_EVENTS[event_id],
					"ts": format_ts(ts),
				},
			)
	if skipped:
		logger.debug("Skipped %d unusable Cowrie log lines", skipped)
	return commands, auth_attempts


def ingest_cowrie_log(store: EventStore, log_path: Path, max_bytes: Optional[int] = None) -> Dict[str, int]:
	"""Append new Cowrie log entries to the store, resuming from the saved offset.

	Only complete lines are consumed; a trailing partial line is left for the
	next run.
	"""
	result = {"commands": 0, "auth_attempts": 0}
	log_path = Path(log_path)
	if not log_path.exists() or not log_path.is_file():
		logger.info("Cowrie log %s not found; nothing to ingest", log_path)
		return result
	key = str(log_path.resolve())
	offset = store.get_offset(key)
	if log_path.stat().st_size < offset:
		logger.warning("Cowrie log %s shrank below saved offset %d; starting over", log_path, offset)
		offset = 0
	with log_path.open("rb") as handle:
		handle.seek(offset)
		data = handle.read(max_bytes) if max_bytes else handle.read()
	end = data.rfind(b"\n")
	if end < 0:
		return result
	chunk = data[: end + 1]
	lines = chunk.decode("utf-8", errors="ignore").splitlines()
	commands, auth_attempts = parse_cowrie_lines(lines)
	store.append_batch(commands, auth_attempts, file_path=key, offset=offset + len(chunk))
	result["commands"] = len(commands)
	result["auth_attempts"] = len(auth_attempts)
	if commands or auth_attempts:
		logger.info(
			"Ingested %d commands and %d login attempts from %s",
			len(commands),
			len(auth_attempts),
			log_path,
		)
	return result
