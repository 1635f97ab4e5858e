#!/usr/bin/env python3
"""Command-line interface running the evaluation reconciliation on local files."""
from __future__ import annotations

import argparse
import json
import sys
import traceback
from pathlib import Path
from typing import Any, Dict

FUNCTIONS_DIR = Path(__file__).resolve().parent.parent
if str(FUNCTIONS_DIR) not in sys.path:
    sys.path.insert(0, str(FUNCTIONS_DIR))

from evaluasi import logic  # noqa: E402


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8-sig") as f:
        return f.read()


def _read_json_list(path: str) -> list:
    payload = json.loads(_read_text(path))
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        payload = payload["data"]
    if not isinstance(payload, list):
        raise ValueError(f"{path}: expected a JSON array")
    return payload


def load_dataset(args: argparse.Namespace) -> dict:
    if args.csv:
        return logic.dataset_from_sheet_csv(_read_text(args.csv))
    if args.employees and args.responses:
        return logic.dataset_from_json(_read_json_list(args.employees), _read_json_list(args.responses))
    raise ValueError("Provide --csv, or both --employees and --responses")


def handle_summary(args: argparse.Namespace) -> Dict[str, Any]:
    report = logic.build_report(load_dataset(args), department=args.department)
    return {"ok": True, **report}


def handle_export(args: argparse.Namespace) -> Dict[str, Any]:
    report = logic.build_report(load_dataset(args), department=args.department)
    text = logic.export_csv(logic.report_rows(report, args.kind, department=args.department))
    filename = logic.report_filename(args.kind, args.department)
    if text is None:
        return {"ok": True, "warning": "nothing to export", "filename": filename, "data": None}
    if args.out:
        out = Path(args.out)
        if out.is_dir():
            out = out / filename
        out.write_text(text, encoding="utf-8")
        return {"ok": True, "filename": str(out)}
    return {"ok": True, "filename": filename, "data": text}


def _add_inputs(p: argparse.ArgumentParser) -> None:
    p.add_argument("--csv", help="Path to the published sheet CSV")
    p.add_argument("--employees", help="Path to the employees JSON array")
    p.add_argument("--responses", help="Path to the responses JSON array")
    p.add_argument("--department", help="Restrict detail rows to one department")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Evaluation completion CLI adapter")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_summary = subparsers.add_parser("summary", help="Per-department completion summary")
    _add_inputs(p_summary)

    p_export = subparsers.add_parser("export", help="Export a report as CSV")
    p_export.add_argument("kind", choices=logic.EXPORT_KINDS)
    _add_inputs(p_export)
    p_export.add_argument("--out", help="File or directory to write the CSV to")

    args = parser.parse_args(argv)

    try:
        if args.command == "summary":
            payload = handle_summary(args)
        elif args.command == "export":
            payload = handle_export(args)
        else:
            raise ValueError(f"Unsupported command: {args.command}")
        print(json.dumps(payload, default=str))
        return 0
    except Exception as exc:  # pragma: no cover - best effort error reporting
        err_payload = {
            "ok": False,
            "error": str(exc),
            "traceback": traceback.format_exc(),
        }
        print(json.dumps(err_payload))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
