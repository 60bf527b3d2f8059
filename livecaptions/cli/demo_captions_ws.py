# coding=utf-8
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Live caption aggregation demo over WebSocket.

Clients push raw transcription/translation endpoint messages; the server
merges them per utterance and pushes `update` / `remove` messages back.
"""
import argparse
import asyncio
import json
import logging
import socket
from contextlib import suppress
from types import SimpleNamespace
from typing import Any, Callable, Dict, Optional

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse
from livecaptions.subtitles.aggregator import CaptionAggregator, RemoveUtterance, UpdateUtterance
from livecaptions.subtitles.models import REMOVE_AFTER_MS, FinalPolicy, coerce_bool
from livecaptions.subtitles.subscription import LocalSession, SessionCollaborator, SubscriptionController

logger = logging.getLogger(__name__)

INDEX_HTML_TEMPLATE = r"""<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8" />
<title>Live Captions</title>
<style>
  body { font-family: system-ui, sans-serif; background: #111; color: #eee; margin: 2rem; }
  #captions div { margin: .25rem 0; }
  .final { color: #fff; }
  .stable { color: #ccc; }
  .unstable { color: #888; font-style: italic; }
  .who { color: #7ab; margin-right: .5rem; }
</style>
</head>
<body>
<div>
  <input id="lang" value="__TARGET_LANGUAGE__" size="8" />
  <button id="toggle">toggle captions</button>
  <span id="status">connecting</span>
</div>
<div id="captions"></div>
<script>
const rows = new Map();
let requesting = false;
const box = document.getElementById("captions");
const proto = location.protocol === "https:" ? "wss" : "ws";
const ws = new WebSocket(`${proto}://${location.host}/ws`);
ws.onopen = () => { document.getElementById("status").textContent = "connected"; };
ws.onclose = () => { document.getElementById("status").textContent = "closed"; };
ws.onmessage = (ev) => {
  const msg = JSON.parse(ev.data);
  if (msg.type === "update") {
    let row = rows.get(msg.utterance_id);
    if (!row) {
      row = document.createElement("div");
      rows.set(msg.utterance_id, row);
      box.appendChild(row);
    }
    const tier = msg.final !== undefined ? "final" : (msg.stable !== undefined ? "stable" : "unstable");
    row.className = tier;
    row.innerHTML = "";
    const who = document.createElement("span");
    who.className = "who";
    who.textContent = (msg.participant && msg.participant.name) || "";
    row.appendChild(who);
    row.appendChild(document.createTextNode(msg[tier] || ""));
  } else if (msg.type === "remove") {
    const row = rows.get(msg.utterance_id);
    if (row) { row.remove(); rows.delete(msg.utterance_id); }
  } else if (msg.type === "requesting" || msg.type === "ready") {
    requesting = !!msg.requesting;
    document.getElementById("status").textContent = msg.requesting ? `captions: ${msg.target_language || ""}` : "captions off";
  }
};
document.getElementById("toggle").onclick = () => {
  const language = document.getElementById("lang").value;
  ws.send(JSON.stringify({ type: "set_requesting", enabled: !requesting, language }));
};
</script>
</body>
</html>
"""


def _assert_port_bindable(host: str, port: int) -> None:
    bind_host = str(host or "0.0.0.0").strip() or "0.0.0.0"
    bind_port = int(port)
    try:
        addr_infos = socket.getaddrinfo(
            bind_host,
            bind_port,
            family=socket.AF_UNSPEC,
            type=socket.SOCK_STREAM,
            flags=socket.AI_PASSIVE,
        )
    except socket.gaierror as exc:
        raise RuntimeError(f"invalid bind host '{bind_host}': {exc}") from exc

    last_error: Optional[OSError] = None
    for family, socktype, proto, _, sockaddr in addr_infos:
        sock = socket.socket(family, socktype, proto)
        with suppress(OSError):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(sockaddr)
            return
        except OSError as exc:
            last_error = exc
        finally:
            sock.close()
    raise RuntimeError(f"bind {bind_host}:{bind_port} is not available: {last_error}")


def _parse_json_message(text: str) -> Dict[str, Any]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid json: {e}") from e
    if not isinstance(payload, dict):
        raise ValueError("json message must be an object")
    return payload


def _normalize_target_language(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    if not text or text.lower() in {"none", "null", "off"}:
        return None
    return text


def _action_message(action: Any) -> Dict[str, Any]:
    if isinstance(action, UpdateUtterance):
        return {"type": "update", **action.record.to_dict()}
    if isinstance(action, RemoveUtterance):
        return {"type": "remove", "utterance_id": action.utterance_id, "reason": action.reason}
    raise TypeError(f"unsupported caption action: {type(action).__name__}")


def _put_dropping_oldest(queue: asyncio.Queue, payload: Any) -> int:
    dropped = 0
    while True:
        try:
            queue.put_nowait(payload)
            return dropped
        except asyncio.QueueFull:
            try:
                queue.get_nowait()
                dropped += 1
            except asyncio.QueueEmpty:
                continue


class _QueueNotifier:
    """
    Reports transcription chunks to the client without waiting for the send.
    """

    def __init__(self, enqueue: Callable[[Dict[str, Any]], None]) -> None:
        self.enqueue = enqueue

    def notify_chunk(self, payload: Dict[str, Any]) -> None:
        self.enqueue({"type": "transcription_chunk", **payload})


def _create_app(
    args: argparse.Namespace,
    session_factory: Callable[[], SessionCollaborator] = LocalSession,
) -> FastAPI:
    app = FastAPI(title="Live Captions WebSocket Demo")
    runtime = SimpleNamespace(active_connections=0)
    initial_language = _normalize_target_language(getattr(args, "target_language", None))
    final_policy = FinalPolicy.parse(getattr(args, "final_policy", "overwrite"))
    remove_after_ms = max(1.0, float(getattr(args, "remove_after_ms", REMOVE_AFTER_MS)))
    outbox_size = max(8, int(getattr(args, "outbox_size", 256)))

    @app.get("/")
    async def index() -> HTMLResponse:
        html = INDEX_HTML_TEMPLATE.replace("__TARGET_LANGUAGE__", initial_language or "")
        return HTMLResponse(html)

    @app.websocket("/ws")
    async def ws_captions(websocket: WebSocket) -> None:
        if runtime.active_connections >= int(getattr(args, "max_connections", 8)):
            await websocket.accept()
            await websocket.send_json({"type": "error", "message": "too many active connections"})
            await websocket.close(code=1013)
            return

        await websocket.accept()
        runtime.active_connections += 1
        peer = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"

        outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        outbox_stats = SimpleNamespace(dropped=0)

        def _send_json(payload: Dict[str, Any]) -> None:
            dropped = _put_dropping_oldest(outbox, payload)
            if dropped:
                outbox_stats.dropped += dropped
                logger.warning("outbox full peer=%s dropped_oldest=%d", peer, dropped)

        controller = SubscriptionController(session=session_factory())
        controller.sync_from_session()
        if initial_language:
            controller.set_requesting(True, initial_language)
        aggregator = CaptionAggregator(
            notifier=_QueueNotifier(_send_json) if bool(getattr(args, "notify_chunks", True)) else None,
            skip_interim_results=bool(getattr(args, "skip_interim_results", False)),
            final_policy=final_policy,
            remove_after_ms=remove_after_ms,
            loop=asyncio.get_running_loop(),
            trace_log=bool(getattr(args, "caption_trace_log", False)),
        )
        aggregator.add_listener(lambda action: _send_json(_action_message(action)))
        logger.info(
            "ws open peer=%s active=%d target_language=%s final_policy=%s remove_after_ms=%.0f",
            peer,
            runtime.active_connections,
            controller.preferences.target_language or "",
            final_policy.value,
            remove_after_ms,
        )

        async def _sender() -> None:
            while True:
                payload = await outbox.get()
                if payload is None:
                    return
                await websocket.send_json(payload)

        def _requesting_message() -> Dict[str, Any]:
            prefs = controller.preferences
            return {
                "type": "requesting",
                "requesting": bool(prefs.requesting_captions),
                "target_language": prefs.target_language,
            }

        sender_task = asyncio.create_task(_sender())
        errors = 0
        try:
            _send_json(
                {
                    "type": "ready",
                    "requesting": bool(controller.preferences.requesting_captions),
                    "target_language": controller.preferences.target_language,
                    "final_policy": final_policy.value,
                    "remove_after_ms": remove_after_ms,
                }
            )

            while True:
                try:
                    msg = await asyncio.wait_for(
                        websocket.receive(),
                        timeout=float(getattr(args, "idle_timeout_sec", 60)),
                    )
                except asyncio.TimeoutError:
                    _send_json({"type": "error", "message": "idle timeout"})
                    break

                if msg.get("type") == "websocket.disconnect":
                    break

                if msg.get("bytes") is not None:
                    errors += 1
                    _send_json({"type": "error", "message": "binary frames are not supported"})
                    continue

                text = msg.get("text")
                if text is None:
                    continue
                try:
                    payload = _parse_json_message(text)
                except ValueError as e:
                    errors += 1
                    _send_json({"type": "error", "message": str(e)})
                    continue

                msg_type = str(payload.get("type", "")).lower()
                if msg_type == "set_requesting":
                    controller.set_requesting(coerce_bool(payload.get("enabled"), True), payload.get("language"))
                    _send_json(_requesting_message())
                    continue

                if msg_type == "toggle_requesting":
                    controller.toggle_requesting()
                    _send_json(_requesting_message())
                    continue

                if msg_type == "remove_utterance":
                    aggregator.remove(str(payload.get("message_id", "") or ""))
                    continue

                if msg_type == "snapshot":
                    _send_json({"type": "snapshot", "utterances": aggregator.snapshot()})
                    continue

                if msg_type == "ping":
                    _send_json({"type": "pong"})
                    continue

                # Anything else is an endpoint message; unsupported ones are dropped.
                aggregator.handle_message(payload, controller.preferences)

        except WebSocketDisconnect:
            pass
        finally:
            aggregator.close()
            runtime.active_connections = max(0, runtime.active_connections - 1)
            _put_dropping_oldest(outbox, None)
            with suppress(asyncio.CancelledError, Exception):
                await asyncio.wait_for(sender_task, timeout=2.0)
            with suppress(Exception):
                await websocket.close(code=1000)
            stats = aggregator.stats
            logger.info(
                "ws close peer=%s active=%d received=%d forwarded=%d dropped=%d updates=%d removals=%d notified=%d errors=%d outbox_dropped=%d",
                peer,
                runtime.active_connections,
                stats["received"],
                stats["forwarded"],
                stats["dropped"],
                stats["updates"],
                stats["removals"],
                stats["notified"],
                errors,
                outbox_stats.dropped,
            )

    return app


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Live Captions Aggregation Demo (HTTP + WebSocket)")
    p.add_argument("--host", default="0.0.0.0", help="Bind host")
    p.add_argument("--port", type=int, default=8025, help="Bind port")
    p.add_argument(
        "--target-language",
        default=None,
        help="Caption language requested on connect, e.g. 'en' or 'translation-languages:de' (empty disables)",
    )
    p.add_argument(
        "--skip-interim-results",
        default=False,
        action=argparse.BooleanOptionalAction,
        help="Testing flag: drop interim transcription results before merging and notifying",
    )
    p.add_argument(
        "--remove-after-ms",
        type=float,
        default=REMOVE_AFTER_MS,
        help="Quiet window after which an utterance without updates is removed",
    )
    p.add_argument(
        "--final-policy",
        default="overwrite",
        choices=[policy.value for policy in FinalPolicy],
        help="Whether interim results may replace an utterance that already has final text",
    )
    p.add_argument(
        "--notify-chunks",
        default=True,
        action=argparse.BooleanOptionalAction,
        help="Report every transcription chunk to the client as 'transcription_chunk'",
    )
    p.add_argument(
        "--outbox-size",
        type=int,
        default=256,
        help="Per-connection queue of outbound messages; the oldest is dropped when a slow client lets it fill",
    )
    p.add_argument("--idle-timeout-sec", type=int, default=60, help="Close idle websocket after timeout")
    p.add_argument("--max-connections", type=int, default=8, help="Maximum active websocket connections")
    p.add_argument(
        "--caption-trace-log",
        default=False,
        action=argparse.BooleanOptionalAction,
        help="Emit structured caption_trace log rows for utterance updates and removals",
    )
    p.add_argument("--ssl-certfile", default=None, help="Path to TLS certificate file (enables HTTPS/WSS)")
    p.add_argument("--ssl-keyfile", default=None, help="Path to TLS private key file")
    p.add_argument("--log-level", default="info", choices=["critical", "error", "warning", "info", "debug"])
    return p.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        _assert_port_bindable(args.host, args.port)
    except RuntimeError as exc:
        logger.error("startup guard failed: %s", exc)
        raise SystemExit(2) from exc

    app = _create_app(args)
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        ssl_certfile=args.ssl_certfile,
        ssl_keyfile=args.ssl_keyfile,
    )


if __name__ == "__main__":
    main()
