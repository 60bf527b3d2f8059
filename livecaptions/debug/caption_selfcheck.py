from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Set

from livecaptions.subtitles.models import Tier

TIER_KEYS = tuple(t.value for t in Tier)


@dataclass
class CaptionSelfcheckResult:
    update_count: int
    remove_count: int
    chunk_count: int
    max_live: int
    tier_conflicts: int
    unknown_removals: int
    final_regressions: int
    left_live: List[str]
    examples: List[Dict[str, Any]]


def analyze_caption_events(events: Iterable[Dict[str, Any]]) -> CaptionSelfcheckResult:
    """
    Check an outbound caption message stream for merge and expiry anomalies.
    """
    live: Set[str] = set()
    finals: Set[str] = set()
    updates = 0
    removes = 0
    chunks = 0
    max_live = 0
    conflicts = 0
    unknown = 0
    regressions = 0
    examples: List[Dict[str, Any]] = []

    def _example(entry: Dict[str, Any]) -> None:
        if len(examples) < 8:
            examples.append(entry)

    for idx, msg in enumerate(events):
        msg_type = str(msg.get("type", "")).lower()
        uid = str(msg.get("utterance_id", "") or "")

        if msg_type == "transcription_chunk":
            chunks += 1
            continue

        if msg_type == "update":
            updates += 1
            present = [k for k in TIER_KEYS if msg.get(k) is not None]
            if len(present) != 1:
                conflicts += 1
                _example({"kind": "tier_conflict", "index": idx, "utterance_id": uid, "tiers": present})
            if uid in finals and "final" not in present:
                regressions += 1
                _example({"kind": "final_regression", "index": idx, "utterance_id": uid, "tiers": present})
            if "final" in present:
                finals.add(uid)
            else:
                finals.discard(uid)
            live.add(uid)
            max_live = max(max_live, len(live))
            continue

        if msg_type == "remove":
            removes += 1
            if uid not in live:
                unknown += 1
                _example({"kind": "unknown_removal", "index": idx, "utterance_id": uid})
            live.discard(uid)
            finals.discard(uid)

    return CaptionSelfcheckResult(
        update_count=updates,
        remove_count=removes,
        chunk_count=chunks,
        max_live=max_live,
        tier_conflicts=conflicts,
        unknown_removals=unknown,
        final_regressions=regressions,
        left_live=sorted(live),
        examples=examples,
    )


def summarize_result(result: CaptionSelfcheckResult) -> str:
    lines = [
        f"updates={result.update_count}",
        f"removes={result.remove_count}",
        f"chunks={result.chunk_count}",
        f"max_live={result.max_live}",
        f"tier_conflicts={result.tier_conflicts}",
        f"unknown_removals={result.unknown_removals}",
        f"final_regressions={result.final_regressions}",
        f"left_live={len(result.left_live)}",
    ]
    if result.examples:
        lines.append("examples:")
        for ex in result.examples:
            kind = ex.get("kind", "event")
            lines.append(f"  - {kind}: {ex}")
    return "\n".join(lines)
