"""Example custom callback: count fired triggers and persist a JSON summary."""

from __future__ import annotations

import json
from collections import Counter
from pathlib import Path

from hftrigger.bits import HF_TRIGGER_NAMES


def process(decisions, context):
    """Write per-trigger event counts next to the candidate table."""
    counts = Counter(HF_TRIGGER_NAMES[t] for d in decisions for t in d.triggers)
    payload = {
        "n_events": len(decisions),
        "n_accepted": sum(1 for d in decisions if d.accepted),
        "triggers": {name: counts.get(name, 0) for name in HF_TRIGGER_NAMES.values()},
        "accepted_events": [d.event_id for d in decisions if d.accepted],
    }
    out = Path(context["output_path"]).with_name("trigger_summary.json")
    out.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    print(f"Wrote {out}")
