import argparse
import json
import os
from pathlib import Path
from typing import List, Tuple

from ..client.backend import BackendClient, FetchError
from ..config import configure_logging, load_config
from ..registry.models import Patient
from ..security.credentials import Credential
from ..telemetry.aggregation import latest_per_patient
from ..telemetry.samples import TemperatureSample
from ..telemetry.triage import ALL, TRIAGE_RANGES, classify, filter_by_range


def _load_json_list(path: Path) -> list:
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON list")
    return data


def _load_from_files(roster: Path, samples: Path) -> Tuple[List[Patient], List[TemperatureSample]]:
    patients = [Patient.from_dict(p) for p in _load_json_list(roster)]
    readings = [TemperatureSample.from_dict(s) for s in _load_json_list(samples)]
    return patients, readings


def build_report(patients: List[Patient], samples: List[TemperatureSample], triage_filter: str) -> dict:
    latest = latest_per_patient(samples)
    rows = []
    for p in filter_by_range(patients, latest, triage_filter):
        sample = latest.get(p.patient_id)
        rows.append(
            {
                "patientId": p.patient_id,
                "name": p.name,
                "age": p.age,
                "temperatureC": sample.temperature_c if sample else None,
                "band": classify(sample.temperature_c) if sample else None,
            }
        )
    return {"filter": triage_filter, "count": len(rows), "patients": rows}


def main():
    parser = argparse.ArgumentParser(description="List patients whose latest temperature falls in a triage band.")
    parser.add_argument("--filter", default=ALL, choices=[ALL, *TRIAGE_RANGES])
    parser.add_argument("--roster", type=Path, help="Patients JSON file (list of {patientId, name, age})")
    parser.add_argument("--samples", type=Path, help="Samples JSON file (list of {patientId, timestamp, temperatureC})")
    parser.add_argument("--output", type=Path, default=None, help="Write the report here instead of stdout")
    args = parser.parse_args()

    cfg = load_config()
    configure_logging(cfg)

    if args.roster and args.samples:
        patients, samples = _load_from_files(args.roster, args.samples)
    else:
        token = os.getenv("TB_API_TOKEN")
        if not token:
            raise SystemExit("Provide --roster and --samples, or set TB_API_TOKEN to fetch from the API")
        credential = Credential.from_bearer(token)
        client = BackendClient.from_config(cfg)
        try:
            patients = client.fetch_patients(credential)
            samples = client.fetch_temperatures(credential)
        except FetchError as e:
            # a failed fetch must not be reported as "no patients in range"
            raise SystemExit(f"Could not fetch data from {cfg.api_base_url}: {e}")

    report = build_report(patients, samples, args.filter)
    text = json.dumps(report, indent=2)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text, encoding="utf-8")
        print(f"Wrote {report['count']} patients to {args.output}")
    else:
        print(text)


if __name__ == "__main__":
    main()
