from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Union

from ..registry.models import Patient
from .samples import TemperatureSample

ALL = "all"


@dataclass(frozen=True)
class TriageRange:
    name: str
    minimum: float
    maximum: float

    def contains(self, temperature_c: float) -> bool:
        # inclusive at both ends
        return self.minimum <= temperature_c <= self.maximum


# Fixed ward policy, not user configurable. Values between bands (e.g. 37.45)
# belong to no band.
TRIAGE_RANGES: Dict[str, TriageRange] = {
    "low": TriageRange("low", 0.0, 37.4),
    "moderate": TriageRange("moderate", 37.5, 38.9),
    "high": TriageRange("high", 39.0, 50.0),
}


def resolve_range(value: Union[str, TriageRange, None]) -> Optional[TriageRange]:
    """Map a filter name to its band; ``None``/``"all"`` mean unconstrained."""
    if value is None or isinstance(value, TriageRange):
        return value
    key = str(value).strip().lower()
    if key == ALL:
        return None
    try:
        return TRIAGE_RANGES[key]
    except KeyError:
        raise ValueError(
            f"Unknown triage range {value!r}; expected one of {[ALL, *TRIAGE_RANGES]}"
        ) from None


def classify(temperature_c: float) -> Optional[str]:
    for band in TRIAGE_RANGES.values():
        if band.contains(temperature_c):
            return band.name
    return None


def filter_by_range(
    patients: Iterable[Patient],
    latest: Mapping[str, TemperatureSample],
    triage_range: Union[str, TriageRange, None] = ALL,
) -> List[Patient]:
    """Patients whose latest reading lies in ``triage_range``, roster order kept.

    The ``all`` filter returns the whole roster, including patients with no
    readings; every other filter drops patients without a reading.
    """
    roster = list(patients)
    band = resolve_range(triage_range)
    if band is None:
        return roster
    selected = []
    for patient in roster:
        sample = latest.get(patient.patient_id)
        if sample is not None and band.contains(sample.temperature_c):
            selected.append(patient)
    return selected
