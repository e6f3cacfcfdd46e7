#!/usr/bin/env python3
"""GuardianLink emergency drill.

Runs a full alert cycle against a live server and reports what a guardian
would have seen: trigger, fan-out, tracking updates, messages, resolution.

Usage:
    # One drill with a guardian at bob@example.com, held live for 20 seconds
    python -m tools.simulator.drill --server http://localhost:8000 --guardian bob@example.com --hold 20

    # Hammer the panic button: 10 concurrent presses must yield one alert
    python -m tools.simulator.drill --server http://localhost:8000 --concurrent 10

    # Trigger by voice instead of the button
    python -m tools.simulator.drill --server http://localhost:8000 --voice "help me"
"""

from __future__ import annotations

import argparse
import asyncio
import time
from dataclasses import dataclass, field

import httpx


@dataclass
class DrillReport:
    alert_id: str = ""
    location_attached: bool = False
    suppressed: int = 0
    rejected: int = 0
    feed_polls: int = 0
    feed_seen_live: bool = False
    feed_cleared: bool = False
    messages_sent: int = 0
    record_counts: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


async def ensure_guardian(client: httpx.AsyncClient, server_url: str, guardian: str) -> None:
    """Register the guardian unless it is already a contact."""
    resp = await client.get(f"{server_url}/api/v1/settings")
    resp.raise_for_status()
    addresses = {c["address"] for c in resp.json()["contacts"]}
    if guardian.strip().lower() in addresses:
        return
    resp = await client.post(
        f"{server_url}/api/v1/settings/contacts",
        json={"name": "Drill guardian", "address": guardian, "is_registered_user": True},
    )
    resp.raise_for_status()


async def press_panic(
    client: httpx.AsyncClient,
    server_url: str,
    reason: str,
    report: DrillReport,
) -> None:
    try:
        resp = await client.post(f"{server_url}/api/v1/alerts", json={"reason": reason})
    except httpx.RequestError as e:
        report.errors.append(f"trigger: {e!r}")
        return
    data = resp.json()
    if resp.status_code == 201:
        report.alert_id = data["alert"]["id"]
        report.location_attached = data["location_attached"]
    elif data.get("error") == "trigger_in_progress":
        report.suppressed += 1
    else:
        report.rejected += 1
        report.errors.append(f"trigger: {resp.status_code} {data.get('error')}")


async def speak_phrase(
    client: httpx.AsyncClient,
    server_url: str,
    phrase: str,
    report: DrillReport,
    timeout: float = 20.0,
) -> None:
    """Arm detection, say the phrase into the simulated microphone, wait for the alert."""
    resp = await client.post(f"{server_url}/api/v1/detection/arm", json={"phrase": phrase})
    resp.raise_for_status()
    resp = await client.post(f"{server_url}/api/v1/detection/utterance",
                             json={"text": f"please {phrase} now"})
    if resp.status_code != 202:
        report.errors.append(f"utterance: {resp.status_code} {resp.json().get('error')}")
        return

    end_time = time.monotonic() + timeout
    while time.monotonic() < end_time:
        resp = await client.get(f"{server_url}/api/v1/alerts/active")
        data = resp.json()
        if data["state"] == "active":
            report.alert_id = data["alert"]["id"]
            report.location_attached = data["alert"].get("lastLocation") is not None
            break
        await asyncio.sleep(0.5)
    else:
        report.errors.append("voice: no alert within timeout")
    await client.post(f"{server_url}/api/v1/detection/disarm")


async def watch_feed(
    client: httpx.AsyncClient,
    server_url: str,
    guardian: str,
    report: DrillReport,
    stop: asyncio.Event,
    interval: float,
) -> None:
    """Poll the guardian's incoming feed the way a dashboard does."""
    while not stop.is_set():
        try:
            resp = await client.get(f"{server_url}/api/v1/alerts/incoming",
                                    params={"address": guardian})
            ids = {a["id"] for a in resp.json()["alerts"]}
            report.feed_polls += 1
            if report.alert_id in ids:
                report.feed_seen_live = True
        except httpx.RequestError as e:
            report.errors.append(f"feed: {e!r}")
        try:
            await asyncio.wait_for(stop.wait(), interval)
        except asyncio.TimeoutError:
            pass


async def run_drill(args: argparse.Namespace) -> DrillReport:
    report = DrillReport()
    server = args.server

    print("Starting drill")
    print(f"  Server: {server}")
    print(f"  Guardian: {args.guardian}")
    print(f"  Concurrent presses: {args.concurrent}")
    print(f"  Hold: {args.hold}s")
    print()

    async with httpx.AsyncClient(timeout=15.0) as client:
        await ensure_guardian(client, server, args.guardian)

        if args.voice:
            await speak_phrase(client, server, args.voice, report)
        else:
            await asyncio.gather(*(
                press_panic(client, server, args.reason, report)
                for _ in range(args.concurrent)
            ))
        if not report.alert_id:
            return report

        channel = f"alert:{report.alert_id}"
        stop = asyncio.Event()
        watcher = asyncio.create_task(
            watch_feed(client, server, args.guardian, report, stop, args.poll_interval))

        end_time = time.monotonic() + args.hold
        n = 0
        while time.monotonic() < end_time:
            n += 1
            resp = await client.post(f"{server}/api/v1/channels/{channel}/messages",
                                     json={"text": f"Drill update #{n}"})
            if resp.status_code == 201:
                report.messages_sent += 1
            else:
                report.errors.append(f"message: {resp.status_code}")
            resp = await client.get(f"{server}/api/v1/channels/{channel}/records")
            report.record_counts.append(resp.json()["total"])
            await asyncio.sleep(args.message_interval)

        resp = await client.post(f"{server}/api/v1/alerts/{report.alert_id}/resolve")
        if resp.status_code != 200:
            report.errors.append(f"resolve: {resp.status_code}")

        resp = await client.get(f"{server}/api/v1/alerts/incoming",
                                params={"address": args.guardian})
        report.feed_cleared = report.alert_id not in {a["id"] for a in resp.json()["alerts"]}

        stop.set()
        await watcher

        resp = await client.get(f"{server}/api/v1/stats")
        if resp.status_code == 200:
            stats = resp.json()
            print("Server stats:")
            print(f"  Alerts created: {stats['alerts']['created']}")
            print(f"  Triggers suppressed: {stats['alerts']['triggers_suppressed']}")
            print(f"  Fan-out deliveries: {stats['channels']['fanout_deliveries']}")
            print(f"  Fan-out failures: {stats['channels']['fanout_failures']}")
            print(f"  Location fixes: {stats['location']['fixes']}")
            print()

    return report


def print_report(report: DrillReport) -> int:
    if not report.alert_id:
        print("Drill FAILED: no alert was created")
        for err in report.errors:
            print(f"  {err}")
        return 1

    ordered = report.record_counts == sorted(report.record_counts)
    print(f"Alert: {report.alert_id}")
    print(f"  Location attached: {report.location_attached}")
    print(f"  Presses suppressed: {report.suppressed}")
    print(f"  Presses rejected: {report.rejected}")
    print(f"  Messages sent: {report.messages_sent}")
    print(f"  Channel grew monotonically: {ordered}")
    print(f"  Guardian saw it live: {report.feed_seen_live} ({report.feed_polls} polls)")
    print(f"  Cleared after resolve: {report.feed_cleared}")
    if report.errors:
        print(f"  Errors ({len(report.errors)}):")
        for err in report.errors[:10]:
            print(f"    {err}")

    ok = report.feed_cleared and ordered and not report.errors
    print(f"\nDrill {'PASSED' if ok else 'FAILED'}")
    return 0 if ok else 1


def main():
    parser = argparse.ArgumentParser(description="GuardianLink emergency drill")
    parser.add_argument("--server", default="http://localhost:8000", help="Server URL")
    parser.add_argument("--guardian", default="guardian@example.com",
                        help="Guardian address to register and watch from")
    parser.add_argument("--reason", default="Drill: panic button", help="Alert reason")
    parser.add_argument("--concurrent", type=int, default=1,
                        help="Simultaneous panic presses (default: 1)")
    parser.add_argument("--hold", type=float, default=10.0,
                        help="Seconds to keep the alert live")
    parser.add_argument("--message-interval", type=float, default=2.0,
                        help="Seconds between drill messages")
    parser.add_argument("--poll-interval", type=float, default=3.0,
                        help="Guardian feed poll interval (default: 3s)")
    parser.add_argument("--voice", metavar="PHRASE",
                        help="Trigger by speaking PHRASE into the simulated microphone")

    args = parser.parse_args()
    report = asyncio.run(run_drill(args))
    raise SystemExit(print_report(report))


if __name__ == "__main__":
    main()
