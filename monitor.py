#!/usr/bin/env python3
"""
Terminal monitor for the honeypot streams.
Subscribes to the live command feed, falls back to replay while it is idle,
and prints the rolling dashboard aggregates.
"""

import argparse
import json
import logging
import threading

from config import load_config
from services.stream_client import DashboardConsumer


def _print_snapshot(snapshot, show_recent):
	summary = {
		"total_events_seen": snapshot["total_events_seen"],
		"unique_ips": snapshot["unique_ips"],
		"failure_rate": snapshot["failure_rate"],
		"events_per_minute": snapshot["events_per_minute"],
		"last_seen": snapshot["last_seen"],
		"attackers_on_map": len(snapshot["map_points"]),
	}
	print(json.dumps(summary))
	if show_recent:
		for row in snapshot["recent"][-show_recent:]:
			print(f"  {row.get('ts')}  {row.get('src_ip') or '-':<15}  {row.get('command') or row.get('username') or ''}")


def main():
	config = load_config()
	parser = argparse.ArgumentParser(description='Honeypot stream monitor')
	parser.add_argument('--base-url', default=config.stream_base_url, help='Dashboard server base URL')
	parser.add_argument('--live-path', default='/api/commands/stream', help='Live SSE endpoint path')
	parser.add_argument('--replay-path', default='/api/attacks/replay', help='Replay SSE endpoint path')
	parser.add_argument('--recent', type=int, default=5, help='Recent events to print per update')
	parser.add_argument('--verbose', action='store_true', help='Debug logging')

	args = parser.parse_args()
	config.stream_base_url = args.base_url.rstrip('/')

	logging.basicConfig(
		level=logging.DEBUG if args.verbose else config.log_level,
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)

	consumer = DashboardConsumer(config, live_path=args.live_path, replay_path=args.replay_path)
	stop = threading.Event()
	try:
		consumer.run(on_update=lambda snap: _print_snapshot(snap, args.recent), stop=stop)
	except KeyboardInterrupt:
		print("\n[*] Shutting down...")
		stop.set()


if __name__ == '__main__':
	main()
