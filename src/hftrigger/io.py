"""Input/output helpers for JSON event inputs and tabular result export."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Sequence

from .bits import CHARM_PARTICLE_NAMES, HF_TRIGGER_NAMES, HfTrigger
from .models import CaloCluster, EventDecision, EventInput, TrackState, V0Photon

logger = logging.getLogger(__name__)

# Optional per-track observables, read under their TrackState field names.
_TRACK_FLOAT_FIELDS = (
    "dca_xy",
    "dca_z",
    "tpc_nsigma_el",
    "tpc_nsigma_pi",
    "tpc_nsigma_ka",
    "tpc_nsigma_pr",
    "tof_nsigma_el",
    "tof_nsigma_pi",
    "tof_nsigma_ka",
    "tof_nsigma_pr",
    "tpc_inner_param",
)


def load_events_json(path: str | Path) -> list[EventInput]:
    """Load multi-event input JSON into `EventInput` objects.

    Expected shape:
    {
      "events": [
        {"event_id": "...", "run_number": 529397,
         "tracks": [...], "photons": [...], "clusters": [...]},
        ...
      ]
    }
    `photons` and `clusters` are optional.
    """
    data = _load_json(path)
    events_data = data.get("events")
    if not isinstance(events_data, list):
        raise ValueError("Events JSON must contain a list under key 'events'.")
    out: list[EventInput] = []
    for idx, event in enumerate(events_data):
        if not isinstance(event, dict):
            raise ValueError(f"Event entry at index {idx} must be an object.")
        event_id = str(event.get("event_id", f"evt{idx}"))
        tracks_data = event.get("tracks")
        if not isinstance(tracks_data, list):
            raise ValueError(f"Event '{event_id}' must contain a list under key 'tracks'.")
        context = f"event '{event_id}'"
        tracks = tuple(
            _parse_track_item(item=item, idx=tidx, context=context) for tidx, item in enumerate(tracks_data)
        )
        photons = tuple(
            _parse_photon_item(item=item, idx=pidx, context=context)
            for pidx, item in enumerate(_optional_list(event, "photons", event_id))
        )
        clusters = tuple(
            _parse_cluster_item(item=item, idx=cidx, context=context)
            for cidx, item in enumerate(_optional_list(event, "clusters", event_id))
        )
        run_number = event.get("run_number")
        out.append(
            EventInput(
                event_id=event_id,
                tracks=tracks,
                photons=photons,
                clusters=clusters,
                run_number=int(run_number) if run_number is not None else None,
            )
        )
    logger.info("Loaded %d events from %s", len(out), path)
    return out


def write_results_table(path: str | Path, rows: Sequence[dict[str, Any]]) -> None:
    """Write row dictionaries into a Parquet/CSV/Pickle table."""
    pd = _require_pandas()
    df = pd.DataFrame(list(rows))
    out = Path(path)
    suffix = out.suffix.lower()
    if suffix == ".parquet":
        df.to_parquet(out, index=False)
    elif suffix in (".pkl", ".pickle"):
        df.to_pickle(out)
    elif suffix == ".csv":
        df.to_csv(out, index=False)
    else:
        raise ValueError(f"Unsupported output format '{suffix}'. Use .parquet, .csv, or .pkl")
    logger.info("Wrote %d rows to %s", len(df), out)


def candidate_rows(decisions: Sequence[EventDecision]) -> list[dict[str, Any]]:
    """Flatten charm candidates into one row per candidate and charm species."""
    rows: list[dict[str, Any]] = []
    for decision in decisions:
        for cand in decision.charm_candidates:
            for particle, bits in cand.selection.items():
                scores = cand.scores.get(particle, ())
                origin = cand.origin.get(particle)
                row: dict[str, Any] = {
                    "event_id": decision.event_id,
                    "species": CHARM_PARTICLE_NAMES[particle],
                    "n_prongs": cand.n_prongs,
                    "track_indices": ",".join(str(i) for i in cand.track_indices),
                    "charge": cand.charge,
                    "px": cand.p4_momentum[0],
                    "py": cand.p4_momentum[1],
                    "pz": cand.p4_momentum[2],
                    "pt": cand.pt,
                    "selection_bits": int(bits),
                    "origin_bits": int(origin) if origin is not None else -1,
                    "score_bkg": scores[0] if len(scores) == 3 else None,
                    "score_prompt": scores[1] if len(scores) == 3 else None,
                    "score_nonprompt": scores[2] if len(scores) == 3 else None,
                }
                for label, mass in cand.invariant_masses.items():
                    row[f"inv_mass_{label}"] = mass
                rows.append(row)
    return rows


def decision_rows(decisions: Sequence[EventDecision]) -> list[dict[str, Any]]:
    """One row per event with a boolean column per trigger class."""
    rows: list[dict[str, Any]] = []
    for decision in decisions:
        row: dict[str, Any] = {"event_id": decision.event_id, "accepted": decision.accepted}
        for trigger in HfTrigger:
            row[HF_TRIGGER_NAMES[trigger]] = trigger in decision.triggers
        kstars = [kstar for _, _, kstar in decision.relative_momenta]
        row["min_relative_momentum"] = min(kstars) if kstars else None
        row["n_charm_candidates"] = len(decision.charm_candidates)
        row["n_beauty_candidates"] = len(decision.beauty_candidates)
        row["beauty_particles"] = ",".join(sorted({b.particle for b in decision.beauty_candidates}))
        row["n_independent_2prong"] = decision.n_independent_2prong
        row["n_independent_3prong"] = decision.n_independent_3prong
        row["n_independent_mixed"] = decision.n_independent_mixed
        row["n_dalitz_tracks"] = len(decision.dalitz_bits)
        row["n_selected_clusters"] = len(decision.selected_cluster_indices)
        rows.append(row)
    return rows


def _require_pandas():
    """Import pandas lazily and provide a clear installation hint on failure."""
    try:
        import pandas as pd  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "pandas is required to write output tables. Install pandas and pyarrow."
        ) from exc
    return pd


def _parse_track_item(item: Any, idx: int, context: str) -> TrackState:
    """Parse one track dictionary into a `TrackState`."""
    if not isinstance(item, dict):
        raise ValueError(f"Track entry at index {idx} in {context} must be an object.")
    try:
        kwargs: dict[str, Any] = {
            "index": int(item.get("index", idx)),
            "px": float(item["px"]),
            "py": float(item["py"]),
            "pz": float(item["pz"]),
            "charge": int(item.get("charge", 0)),
        }
    except KeyError as exc:
        raise ValueError(f"Track at index {idx} in {context} is missing field {exc}.") from exc
    for key in _TRACK_FLOAT_FIELDS:
        if key in item:
            kwargs[key] = float(item[key])
    kwargs["has_tof"] = bool(item.get("has_tof", False))
    kwargs["tpc_ncls_found"] = int(item.get("tpc_ncls_found", 0))
    kwargs["is_global_track"] = bool(item.get("is_global_track", True))
    return TrackState(**kwargs)


def _parse_photon_item(item: Any, idx: int, context: str) -> V0Photon:
    """Parse one photon-conversion dictionary into a `V0Photon`."""
    if not isinstance(item, dict):
        raise ValueError(f"Photon entry at index {idx} in {context} must be an object.")
    try:
        return V0Photon(
            index=int(item.get("index", idx)),
            px=float(item["px"]),
            py=float(item["py"]),
            pz=float(item["pz"]),
            v0_radius=float(item["v0_radius"]),
            alpha=float(item["alpha"]),
            qt_arm=float(item["qt_arm"]),
            psi_pair=float(item["psi_pair"]),
            cos_pa=float(item["cos_pa"]),
            daughter_indices=tuple(int(x) for x in item.get("daughter_indices", ())),
        )
    except KeyError as exc:
        raise ValueError(f"Photon at index {idx} in {context} is missing field {exc}.") from exc


def _parse_cluster_item(item: Any, idx: int, context: str) -> CaloCluster:
    """Parse one calorimeter-cluster dictionary into a `CaloCluster`."""
    if not isinstance(item, dict):
        raise ValueError(f"Cluster entry at index {idx} in {context} must be an object.")
    try:
        return CaloCluster(
            index=int(item.get("index", idx)),
            energy=float(item["energy"]),
            eta=float(item["eta"]),
            phi=float(item["phi"]),
            time=float(item["time"]),
            m02=float(item["m02"]),
            collision_id=int(item.get("collision_id", -1)),
        )
    except KeyError as exc:
        raise ValueError(f"Cluster at index {idx} in {context} is missing field {exc}.") from exc


def _optional_list(event: dict[str, Any], key: str, event_id: str) -> list[Any]:
    value = event.get(key, [])
    if not isinstance(value, list):
        raise ValueError(f"Event '{event_id}' key '{key}' must be a list.")
    return value


def _load_json(path: str | Path) -> dict[str, Any]:
    """Read and validate a JSON object document from disk."""
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"JSON document at {path} must be an object.")
    return data
