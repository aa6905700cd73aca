#!/usr/bin/env python3
"""Stream synthetic squat frames to a running coach API and log what it reports.

- Creates a session via POST /coach/session
- Posts one frame per tick to /coach/session/{id}/frame
- Exports hip_timeline.csv with columns: t_ms, smoothed_hip_y, status, rep_count, speech
- Prints a summary with reps counted and the spoken corrections

Usage:
  python scripts/simulate_session.py --base-url http://127.0.0.1:8000 --cycles 5 --lean 35
"""
from __future__ import annotations

import argparse
import csv
import json
from pathlib import Path
from typing import Any, Dict, List

import httpx

from formcoach.vision.synthetic import SquatScript, squat_frames

TIMELINE_CSV = "hip_timeline.csv"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drive a coaching session with synthetic squats")
    parser.add_argument("--base-url", default="http://127.0.0.1:8000", help="API base URL (default: %(default)s)")
    parser.add_argument("--exercise", default=None, help="Exercise id (server default when omitted)")
    parser.add_argument("--cycles", type=int, default=3)
    parser.add_argument("--depth", type=float, default=1.0, help="Fraction of the hip->knee span reached")
    parser.add_argument("--lean", type=float, default=10.0, help="Torso lean in degrees")
    parser.add_argument("--jitter", type=float, default=1.5, help="Keypoint noise in pixels")
    parser.add_argument("--out", default=None, help="Directory for hip_timeline.csv")
    return parser.parse_args()


def export_timeline(rows: List[Dict[str, Any]], out_dir: Path) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / TIMELINE_CSV
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=list(rows[0].keys()) if rows else ["t_ms"])
        writer.writeheader()
        writer.writerows(rows)
    return path


def main() -> None:
    args = parse_args()
    base = args.base_url.rstrip("/")
    script = SquatScript(cycles=args.cycles, depth=args.depth, torso_lean_deg=args.lean, jitter_px=args.jitter)
    rows: List[Dict[str, Any]] = []
    spoken: List[str] = []

    with httpx.Client(base_url=base, timeout=10) as client:
        resp = client.post("/coach/session", json={"exercise_id": args.exercise})
        resp.raise_for_status()
        session = resp.json()["data"]
        session_id = session["session_id"]
        print(f"Session {session_id} ({session['exercise_id']}, fallback rules: {session['rules_fallback']})")

        for t, keypoints in squat_frames(script):
            payload = {
                "keypoints": [{"name": kp.name, "x": kp.x, "y": kp.y, "score": kp.score} for kp in keypoints],
                "timestamp_ms": t,
            }
            r = client.post(f"/coach/session/{session_id}/frame", json=payload)
            r.raise_for_status()
            data = r.json()["data"]
            speech = data.get("speech")
            if speech:
                spoken.append(speech["text"])
            metrics = data.get("metrics") or {}
            rows.append(
                {
                    "t_ms": t,
                    "smoothed_hip_y": metrics.get("smoothed_hip_y"),
                    "status": data["status"],
                    "rep_count": data["rep_count"],
                    "speech": speech["text"] if speech else "",
                }
            )

        final = client.get(f"/coach/session/{session_id}/status").json()["data"]
        client.delete(f"/coach/session/{session_id}")

    if args.out:
        path = export_timeline(rows, Path(args.out))
        print(f"Wrote {path}")

    summary = {
        "frames": len(rows),
        "rep_count": final["rep_count"],
        "expected_reps": args.cycles,
        "status": final["status_text"],
        "spoken": spoken,
    }
    print(json.dumps(summary, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
