#!/usr/bin/env python3
"""
Administrative access to the equipment request store.

Examples:
    python3 scripts/manage_requests.py list
    python3 scripts/manage_requests.py show REQ-0040125
    python3 scripts/manage_requests.py delete REQ-0040125 --yes
    python3 scripts/manage_requests.py counter
"""

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.core.config import get_settings
from app.db.file_store import sequence_from_request_id
from app.db.request_store import RequestStore, build_request_store


def _list(store: RequestStore) -> int:
    request_ids = store.all_ids()
    if not request_ids:
        print("No requests stored.")
        return 0
    for request_id in request_ids:
        record = store.get(request_id)
        if record is None:
            print(f"{request_id}\t(unreadable)")
            continue
        print(
            f"{request_id}\t{record.approval_status.value}\t"
            f"{record.requester_email}\t{record.submitted_at.isoformat()}"
        )
    return 0


def _show(store: RequestStore, request_id: str) -> int:
    record = store.get(request_id)
    if record is None:
        print(f"Request {request_id} not found.", file=sys.stderr)
        return 1
    data = record.model_dump(mode="json", exclude={"approval_token"})
    print(json.dumps(data, indent=2))
    return 0


def _delete(store: RequestStore, request_id: str, confirmed: bool) -> int:
    if not confirmed:
        print("Refusing to delete without --yes.", file=sys.stderr)
        return 2
    if not store.delete(request_id):
        print(f"Request {request_id} not found.", file=sys.stderr)
        return 1
    print(f"Deleted {request_id}.")
    return 0


def _counter(store: RequestStore) -> int:
    issued = [sequence_from_request_id(request_id) for request_id in store.all_ids()]
    highest = max((seq for seq in issued if seq is not None), default=0)
    print(f"Highest issued sequence in stored requests: {highest}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Manage stored equipment requests.")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="List stored request ids with their status")
    show = sub.add_parser("show", help="Print one request without its approval token")
    show.add_argument("request_id")
    delete = sub.add_parser("delete", help="Remove a request from the store")
    delete.add_argument("request_id")
    delete.add_argument("--yes", action="store_true", help="Confirm the deletion")
    sub.add_parser("counter", help="Show the highest sequence number in use")
    args = parser.parse_args(argv)

    store = build_request_store(get_settings())
    try:
        if args.command == "list":
            return _list(store)
        if args.command == "show":
            return _show(store, args.request_id)
        if args.command == "delete":
            return _delete(store, args.request_id, args.yes)
        return _counter(store)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
