"""Pure aggregation over temperature samples.

Every function takes a snapshot of its input at call time and never mutates
it, so callers may pass a sequence that another thread keeps appending to.
"""

from typing import Dict, Iterable, List, Optional
import numpy as np

from .samples import TemperatureSample


def _check_window(window_seconds: int) -> None:
    if isinstance(window_seconds, bool) or not isinstance(window_seconds, int) or window_seconds <= 0:
        raise ValueError(f"window_seconds must be a positive integer, got {window_seconds!r}")


def window_filter(samples: Iterable[TemperatureSample], now: float, window_seconds: int) -> List[TemperatureSample]:
    """Samples newer than ``now - window_seconds``, in their original order."""
    _check_window(window_seconds)
    cutoff = now - window_seconds
    return [s for s in tuple(samples) if s.timestamp > cutoff]


def latest_snapshot(
    samples: Iterable[TemperatureSample],
    now: Optional[float] = None,
    window_seconds: Optional[int] = None,
) -> Dict[str, TemperatureSample]:
    """Most recent sample per patient, optionally restricted to a lookback window.

    On equal timestamps the sample seen last in input order wins; callers
    should not depend on which of two colliding samples is returned.
    Patients without samples are absent from the result.
    """
    snapshot = tuple(samples)
    if window_seconds is not None:
        if now is None:
            raise ValueError("now is required when a window is given")
        snapshot = window_filter(snapshot, now, window_seconds)

    latest: Dict[str, TemperatureSample] = {}
    for s in snapshot:
        current = latest.get(s.patient_id)
        if current is None or s.timestamp >= current.timestamp:
            latest[s.patient_id] = s
    return latest


def latest_per_patient(samples: Iterable[TemperatureSample]) -> Dict[str, TemperatureSample]:
    """Unwindowed latest snapshot, used by the dashboard roster."""
    return latest_snapshot(samples)


def latest_per_patient_within(
    samples: Iterable[TemperatureSample], now: float, window_seconds: int
) -> Dict[str, TemperatureSample]:
    """Latest snapshot over the lookback window, used by the patient detail view."""
    return latest_snapshot(samples, now=now, window_seconds=window_seconds)


def samples_for_patient(samples: Iterable[TemperatureSample], patient_id: str) -> List[TemperatureSample]:
    patient_id = str(patient_id)
    return [s for s in tuple(samples) if s.patient_id == patient_id]


def temperature_summary(samples: Iterable[TemperatureSample]) -> Dict:
    """Count, min, max, mean and latest reading for a patient's history."""
    snapshot = tuple(samples)
    if not snapshot:
        return {"count": 0, "min": None, "max": None, "mean": None, "latest": None}
    temps = np.array([s.temperature_c for s in snapshot], dtype=np.float64)
    latest = max(snapshot, key=lambda s: s.timestamp)
    return {
        "count": int(temps.size),
        "min": float(temps.min()),
        "max": float(temps.max()),
        "mean": round(float(temps.mean()), 2),
        "latest": latest.to_dict(),
    }


def chart_series(samples: Iterable[TemperatureSample]) -> List[Dict]:
    """Time-ordered points for the history chart."""
    return [
        {"timestamp": s.timestamp, "temperatureC": s.temperature_c}
        for s in sorted(tuple(samples), key=lambda s: s.timestamp)
    ]
