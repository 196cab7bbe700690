from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterator, List

from .config import get_settings
from .enrichment import NoopEnrichmentClient, get_enrichment_client
from .errors import MalformedAddress
from .fusion import remove_distress_signal
from .identity import identity_warnings
from .ingest import BatchIngestor, stream_ingest
from .models import RawPropertyObservation
from .normalize import normalize
from .store import SQLiteCanonicalStore


def _read_observations(path: Path, bad_lines: List[Dict[str, Any]]) -> Iterator[RawPropertyObservation]:
    with path.open("r", encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError as exc:
                bad_lines.append({"line": line_no, "kind": "invalid-json", "message": str(exc)})
                continue
            if not isinstance(data, dict):
                bad_lines.append({"line": line_no, "kind": "invalid-json", "message": "not an object"})
                continue
            try:
                observation = RawPropertyObservation.from_dict(data)
            except (TypeError, ValueError) as exc:
                bad_lines.append({"line": line_no, "kind": "invalid-observation", "message": str(exc)})
                continue
            yield observation


def _open_store(db: str) -> SQLiteCanonicalStore:
    return SQLiteCanonicalStore(db, history_limit=get_settings().history_limit)


def _cmd_normalize(args) -> int:
    try:
        address, key = normalize(args.address)
    except MalformedAddress as exc:
        print(json.dumps({"error": str(exc)}))
        return 2
    print(
        json.dumps(
            {
                "address": address.to_dict(),
                "identity_key": key,
                "warnings": identity_warnings(address),
            }
        )
    )
    return 0


def _cmd_ingest(args) -> int:
    input_path = Path(str(args.input))
    if not input_path.is_file():
        print(json.dumps({"error": f"input not found: {input_path}"}))
        return 2

    store = _open_store(args.db)
    client = NoopEnrichmentClient() if args.no_enrich else get_enrichment_client()
    ingestor = BatchIngestor(
        store,
        client,
        max_workers=args.max_workers,
        enrichment_enabled=False if args.no_enrich else None,
    )
    bad_lines: List[Dict[str, Any]] = []

    def _on_chunk(index, result):
        if args.log_json:
            for entry in result.log_entries:
                print(json.dumps(entry))

    try:
        result = stream_ingest(
            _read_observations(input_path, bad_lines),
            ingestor,
            chunk_size=args.chunk_size,
            on_chunk_complete=_on_chunk,
        )
    finally:
        store.close()

    summary = result.to_dict()
    summary["skipped"] += len(bad_lines)
    summary["errors"] = list(summary["errors"]) + bad_lines
    print(json.dumps(summary))
    return 1 if result.failed else 0


def _cmd_show(args) -> int:
    store = _open_store(args.db)
    try:
        record = store.get(args.key)
    finally:
        store.close()
    if record is None:
        print(json.dumps({"error": "not found", "identity_key": args.key}))
        return 1
    print(record.to_json())
    return 0


def _cmd_list(args) -> int:
    store = _open_store(args.db)
    try:
        if args.state or args.city or args.zip:
            records = store.find(
                state=args.state, city=args.city, postal_code=args.zip, limit=args.limit
            )
            keys = [r.identity_key for r in records]
        else:
            keys = store.list_keys(limit=args.limit)
    finally:
        store.close()
    print(json.dumps({"identity_keys": keys, "count": len(keys)}))
    return 0


def _cmd_history(args) -> int:
    store = _open_store(args.db)
    try:
        reports = store.history(args.key)
    finally:
        store.close()
    print(json.dumps({"identity_key": args.key, "reports": [r.to_dict() for r in reports]}, default=str))
    return 0


def _cmd_remove_signal(args) -> int:
    store = _open_store(args.db)
    try:
        with store.locked(args.key):
            record = store.get(args.key)
            if record is None:
                print(json.dumps({"error": "not found", "identity_key": args.key}))
                return 1
            updated, report = remove_distress_signal(record, args.signal)
            if report.has_changes:
                store.put(updated, report)
    finally:
        store.close()
    print(json.dumps(report.to_dict(), default=str))
    return 0


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="property-fusion",
        description="Property identity resolution and fusion",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level (DEBUG, INFO, etc.)",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_norm = sub.add_parser("normalize", help="Normalize one address and print its identity key")
    p_norm.add_argument("--address", required=True)

    p_ingest = sub.add_parser("ingest", help="Fuse a JSONL file of observations into the store")
    p_ingest.add_argument("--input", required=True, help="JSONL file, one observation per line")
    p_ingest.add_argument("--db", default=settings.store_path)
    p_ingest.add_argument("--max-workers", type=int, default=None)
    p_ingest.add_argument("--chunk-size", type=int, default=100)
    p_ingest.add_argument("--no-enrich", action="store_true", help="Skip the enrichment provider")
    p_ingest.add_argument(
        "--log-json",
        action="store_true",
        help="Emit one JSON log line per identity key",
    )

    p_show = sub.add_parser("show", help="Print one canonical record")
    p_show.add_argument("--key", required=True)
    p_show.add_argument("--db", default=settings.store_path)

    p_list = sub.add_parser("list", help="List identity keys")
    p_list.add_argument("--db", default=settings.store_path)
    p_list.add_argument("--limit", type=int, default=100)
    p_list.add_argument("--state", default=None)
    p_list.add_argument("--city", default=None)
    p_list.add_argument("--zip", default=None)

    p_hist = sub.add_parser("history", help="Print retained change reports for a key")
    p_hist.add_argument("--key", required=True)
    p_hist.add_argument("--db", default=settings.store_path)

    p_rm = sub.add_parser("remove-signal", help="Explicitly drop a distress signal from a record")
    p_rm.add_argument("--key", required=True)
    p_rm.add_argument("--signal", required=True)
    p_rm.add_argument("--db", default=settings.store_path)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    handlers = {
        "normalize": _cmd_normalize,
        "ingest": _cmd_ingest,
        "show": _cmd_show,
        "list": _cmd_list,
        "history": _cmd_history,
        "remove-signal": _cmd_remove_signal,
    }
    handler = handlers.get(args.cmd)
    if handler is None:
        parser.error("Unknown command")
        return 2
    return handler(args)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
