from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Tuple
import math
import threading


def _checked_seconds(ts: float, original) -> float:
    # must survive format_timestamp later on
    if not math.isfinite(ts):
        raise ValueError(f"Invalid timestamp: {original!r}")
    try:
        datetime.fromtimestamp(ts, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise ValueError(f"Timestamp out of range: {original!r}") from e
    return ts


def parse_timestamp(value) -> float:
    """Return POSIX seconds (UTC) for a number or an ISO-8601 string.

    Naive ISO strings are taken as UTC. Non-finite numbers and instants a
    datetime cannot represent raise ValueError.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        try:
            ts = float(value)
        except OverflowError as e:
            raise ValueError(f"Timestamp out of range: {value!r}") from e
        return _checked_seconds(ts, value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return _checked_seconds(dt.timestamp(), value)
    raise ValueError(f"Invalid timestamp: {value!r}")


def format_timestamp(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class TemperatureSample:
    patient_id: str
    timestamp: float  # POSIX seconds, UTC
    temperature_c: float

    def __post_init__(self):
        if not math.isfinite(self.temperature_c):
            raise ValueError(f"Invalid temperature: {self.temperature_c!r}")
        _checked_seconds(self.timestamp, self.timestamp)

    def to_dict(self) -> Dict:
        return {
            "patientId": self.patient_id,
            "timestamp": format_timestamp(self.timestamp),
            "temperatureC": self.temperature_c,
        }

    @staticmethod
    def from_dict(payload: Dict) -> "TemperatureSample":
        # the hosted backend still emits patientid/datetime/temperature
        patient_id = payload.get("patientId", payload.get("patientid"))
        ts = payload.get("timestamp", payload.get("datetime"))
        temp = payload.get("temperatureC", payload.get("temperature"))
        if patient_id is None or ts is None or temp is None:
            raise ValueError(f"Incomplete temperature sample: {payload!r}")
        return TemperatureSample(
            patient_id=str(patient_id),
            timestamp=parse_timestamp(ts),
            temperature_c=float(temp),
        )


class SampleLog:
    """Append-only in-process sample log.

    Writers append under a lock; readers take ``snapshot()``, an immutable
    tuple of everything appended so far, and never block writers.
    """

    def __init__(self):
        self._samples: List[TemperatureSample] = []
        self._lock = threading.Lock()

    def append(self, samples: Iterable[TemperatureSample]) -> int:
        batch = list(samples)
        with self._lock:
            self._samples.extend(batch)
        return len(batch)

    def snapshot(self) -> Tuple[TemperatureSample, ...]:
        return tuple(self._samples)

    def __len__(self) -> int:
        return len(self._samples)
