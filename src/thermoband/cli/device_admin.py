import argparse
import json
from pathlib import Path

from ..config import configure_logging, load_config
from ..errors import ThermobandError
from ..registry.device_registry import DeviceRegistry
from ..registry.lifecycle import DeviceLifecycleManager
from ..registry.models import SAMPLE_INTERVALS
from ..utils.audit import NDJSONAuditLogger


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage device bindings in a JSON registry file.")
    parser.add_argument("--registry", type=Path, default=None, help="Registry JSON file (default: TB_REGISTRY_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("provision", help="Register a new device")
    p.add_argument("mac")
    p.add_argument("--label", default=None)

    p = sub.add_parser("assign", help="Bind a device to a patient")
    p.add_argument("patient_id")
    p.add_argument("mac")

    p = sub.add_parser("interval", help="Set the sampling interval of a bound device")
    p.add_argument("mac")
    p.add_argument("seconds", type=int, choices=SAMPLE_INTERVALS)

    p = sub.add_parser("reset", help="Release a device back to the unassigned pool")
    p.add_argument("mac")

    p = sub.add_parser("delete-patient", help="Release the patient's device, then remove the patient")
    p.add_argument("patient_id")

    sub.add_parser("unassigned", help="List devices not bound to any patient")
    return parser


def main(argv=None):
    args = _build_parser().parse_args(argv)
    cfg = load_config()
    configure_logging(cfg)

    registry_path = args.registry or cfg.registry_path
    if registry_path is None:
        raise SystemExit("No registry file: pass --registry or set TB_REGISTRY_PATH")
    registry = DeviceRegistry(registry_path)
    audit = NDJSONAuditLogger(cfg.audit_path) if cfg.audit_path else None
    lifecycle = DeviceLifecycleManager(registry, audit=audit)

    try:
        if args.command == "provision":
            result = registry.add_device(args.mac, label=args.label).to_dict()
        elif args.command == "assign":
            result = lifecycle.assign(args.patient_id, args.mac).to_dict()
        elif args.command == "interval":
            result = lifecycle.set_interval(args.mac, args.seconds).to_dict()
        elif args.command == "reset":
            released = lifecycle.reset(args.mac)
            result = {"released": released is not None}
        elif args.command == "delete-patient":
            result = {"deleted": lifecycle.delete_patient(args.patient_id).to_dict()}
        else:
            result = [d.to_dict() for d in registry.list_unassigned_devices()]
    except (ThermobandError, ValueError) as e:
        raise SystemExit(f"{args.command} failed: {e}")

    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
