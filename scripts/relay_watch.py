#!/usr/bin/env python3
"""Watch live positions for one or more entities from the command line.

Connects to the configured broker (``RELAY_*`` environment variables),
subscribes to ``/topic/location/<id>`` for every id given, and prints each
delivered fix and every subscription state change. When the broker is
unreachable the relay falls back to polling the Position Store; the
printed state shows which mode each entity is in.

    python scripts/relay_watch.py SUR009 SUR010 --track-minutes 30
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiohttp

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pylocrelay import (  # noqa: E402
    ChannelState,
    LocationApi,
    PositionUpdate,
    RelayConfig,
    RelayError,
    Subscription,
    SubscriptionManager,
    mqtt_channel_factory,
)
from pylocrelay.ingestion.normalize import format_timestamp  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print live location updates for the given entity ids.")
    parser.add_argument("entity_ids", nargs="+", help="Entity ids to watch (case-insensitive).")
    parser.add_argument(
        "--duration",
        type=float,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--track-minutes",
        type=int,
        default=0,
        help="Print the last N minutes of history for each entity before going live.",
    )
    parser.add_argument("--json", action="store_true", help="Print updates as JSON lines.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


def _print_update(entity_id: str, update: PositionUpdate, *, json_mode: bool) -> None:
    if json_mode:
        print(json.dumps(update.to_wire()), flush=True)
        return
    print(
        f"[watch] {entity_id:<10} {format_timestamp(update.observed_at)}  "
        f"lat={update.latitude:.6f} lon={update.longitude:.6f}",
        flush=True,
    )


def _print_state(sub: Subscription, old: ChannelState, new: ChannelState) -> None:
    print(f"[watch] {sub.entity_id:<10} {old.value} -> {new.value}", file=sys.stderr, flush=True)


async def _print_tracks(api: LocationApi, entity_ids: list[str], minutes: int, *, json_mode: bool) -> None:
    end = datetime.now(UTC)
    start = end - timedelta(minutes=minutes)
    for entity_id in entity_ids:
        try:
            points = await api.get_track(entity_id, start, end)
        except RelayError as exc:
            print(f"[watch] track for {entity_id} unavailable: {exc}", file=sys.stderr)
            continue
        print(f"[watch] {entity_id}: {len(points)} historical fixes", file=sys.stderr)
        for point in points:
            _print_update(point.entity_id, point, json_mode=json_mode)


async def run(args: argparse.Namespace) -> None:
    config = RelayConfig.from_env()
    async with aiohttp.ClientSession() as http:
        api = LocationApi(config, http)
        if args.track_minutes > 0:
            await _print_tracks(api, args.entity_ids, args.track_minutes, json_mode=args.json)

        async with SubscriptionManager(
            mqtt_channel_factory(config),
            api,
            config=config,
            on_state_change=_print_state,
        ) as manager:
            manager.subscribe(
                "relay-watch",
                args.entity_ids,
                lambda entity_id, update: _print_update(entity_id, update, json_mode=args.json),
            )
            try:
                if args.duration > 0:
                    await asyncio.sleep(args.duration)
                else:
                    await asyncio.Event().wait()
            finally:
                print(f"[watch] stats: {manager.stats.model_dump()}", file=sys.stderr)


def main() -> None:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
