#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import re
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List


CAPTION_TRACE_RE = re.compile(r"caption_trace\s+(\{.*\})\s*$")


def _parse_caption_rows(path: Path) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    with path.open("r", encoding="utf-8", errors="replace") as f:
        for line in f:
            m = CAPTION_TRACE_RE.search(line.strip())
            if not m:
                continue
            try:
                row = json.loads(m.group(1))
            except json.JSONDecodeError:
                continue
            if str(row.get("topic", "")) != "caption_state":
                continue
            rows.append(row)
    return rows


def _group_rows(rows: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for row in rows:
        grouped[str(row.get("utterance_id", "unknown"))].append(row)
    return grouped


def _summarize(grouped: Dict[str, List[Dict[str, Any]]]) -> str:
    lines: List[str] = [f"utterances={len(grouped)}"]
    for uid, rows in sorted(grouped.items()):
        rows_sorted = sorted(rows, key=lambda r: int(r.get("seq", 0) or 0))
        updates = [r for r in rows_sorted if r.get("event") == "utterance_update"]
        removes = [r for r in rows_sorted if r.get("event") == "utterance_remove"]
        tiers = "->".join(str(r.get("tier", "") or "?") for r in updates)
        span_ms = 0
        if len(rows_sorted) > 1:
            span_ms = int(rows_sorted[-1].get("ts_ms", 0) or 0) - int(rows_sorted[0].get("ts_ms", 0) or 0)
        last_reason = str(removes[-1].get("reason", "")) if removes else "live"
        lines.append(
            f"[{uid}] updates={len(updates)} removes={len(removes)} tiers={tiers} "
            f"span_ms={span_ms} end={last_reason}"
        )
    return "\n".join(lines)


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Summarize caption_trace utterance lifecycles from a server log.")
    p.add_argument("--log", required=True, help="Path to server log file")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    rows = _parse_caption_rows(Path(args.log).expanduser())
    print(_summarize(_group_rows(rows)))


if __name__ == "__main__":
    main()
