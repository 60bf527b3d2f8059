#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List

import websockets

from livecaptions.debug.caption_selfcheck import analyze_caption_events, summarize_result


async def _recv_loop(ws, events: List[Dict[str, Any]], quiet_sec: float) -> None:
    while True:
        try:
            raw = await asyncio.wait_for(ws.recv(), timeout=quiet_sec)
        except asyncio.TimeoutError:
            return
        except websockets.ConnectionClosed:
            return
        if isinstance(raw, bytes):
            continue
        events.append(json.loads(raw))


async def _replay_events(
    ws_url: str,
    inbound: List[Dict[str, Any]],
    language: str,
    interval_ms: int,
    quiet_sec: float,
) -> List[Dict[str, Any]]:
    events: List[Dict[str, Any]] = []

    async with websockets.connect(ws_url) as ws:
        ready = json.loads(await ws.recv())
        events.append(ready)
        if str(ready.get("type", "")).lower() != "ready":
            raise RuntimeError(f"unexpected first message: {ready}")

        if language:
            await ws.send(json.dumps({"type": "set_requesting", "enabled": True, "language": language}))
        recv_task = asyncio.create_task(_recv_loop(ws, events, quiet_sec))
        sleep_sec = max(0.0, interval_ms / 1000.0)

        for event in inbound:
            await ws.send(json.dumps(event, ensure_ascii=False))
            if sleep_sec > 0:
                await asyncio.sleep(sleep_sec)

        await recv_task

    return events


def _load_events_jsonl(path: Path) -> List[Dict[str, Any]]:
    events: List[Dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            text = line.strip()
            if not text:
                continue
            events.append(json.loads(text))
    return events


def _save_events_jsonl(path: Path, events: List[Dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        for event in events:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Replay caption endpoint messages over WS and self-check the merged output.")
    p.add_argument("--ws-url", default="ws://127.0.0.1:8025/ws")
    p.add_argument("--inbound-jsonl", default="", help="inbound transcription/translation events to replay")
    p.add_argument("--language", default="", help="request captions in this language before replaying")
    p.add_argument("--interval-ms", type=int, default=100, help="delay between replayed events")
    p.add_argument(
        "--quiet-sec",
        type=float,
        default=5.0,
        help="stop collecting after this long without server messages (keep above the removal window)",
    )
    p.add_argument("--events-jsonl", default="", help="save received events to jsonl; or load existing when replay is omitted")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    events_path = Path(args.events_jsonl).expanduser() if args.events_jsonl else None

    if args.inbound_jsonl:
        inbound = _load_events_jsonl(Path(args.inbound_jsonl).expanduser())
        events = asyncio.run(
            _replay_events(
                ws_url=str(args.ws_url),
                inbound=inbound,
                language=str(args.language),
                interval_ms=int(args.interval_ms),
                quiet_sec=float(args.quiet_sec),
            )
        )
        if events_path is not None:
            _save_events_jsonl(events_path, events)
    else:
        if events_path is None:
            raise SystemExit("provide --inbound-jsonl for replay, or --events-jsonl to load existing events")
        events = _load_events_jsonl(events_path)

    result = analyze_caption_events(events)
    print(summarize_result(result))


if __name__ == "__main__":
    main()
