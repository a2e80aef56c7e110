"""
Replay POS events from a JSON file through the ledger pipeline.

The file holds either a JSON list or one JSON object per line, each shaped
like {"type": "order.completed", "data": {...}, "actor_id": "..."}. Events are
routed to one publisher per organization.

Usage:
    python scripts/replay_events.py events.json
    python scripts/replay_events.py events.jsonl --database /tmp/ledger.db --json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.audit.events import AuditLogger, JSONFileAuditBackend
from core.config import load_config
from core.errors import LedgerPipelineError
from core.observability.logging import configure_logging
from core.observability.metrics import get_metrics

from bridge.publisher import AccountingEventPublisher, build_publisher
from storage.eav_store import EAVStore


def load_events(path: Path) -> List[Dict[str, Any]]:
    """Read events from a JSON list or a JSON-lines file."""
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []
    if text.startswith("["):
        return json.loads(text)
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def _organization(event: Dict[str, Any]) -> str:
    data = event.get("data") or {}
    org = event.get("organization_id") or data.get("organization_id") or data.get("organizationId")
    if not org:
        raise ValueError(f"Event {event.get('type')} has no organization_id")
    return org


async def replay(events: List[Dict[str, Any]], config, audit: AuditLogger) -> List[Dict[str, Any]]:
    """Publish each event and collect one outcome row per event."""
    store = EAVStore(config.persistence.database_path)
    publishers: Dict[str, AccountingEventPublisher] = {}
    outcomes = []

    for index, event in enumerate(events, start=1):
        row = {"index": index, "type": event.get("type")}
        try:
            org = _organization(event)
            publisher = publishers.get(org)
            if publisher is None:
                publisher = build_publisher(config, audit, store=store)
                publisher.initialize(org)
                publishers[org] = publisher

            result = await publisher.publish(event["type"], event.get("data") or {}, event.get("actor_id"))
            row.update({
                "success": result.success,
                "message": result.message,
                "journal_number": result.journal_number,
                "posting_status": result.posting_status.value if result.posting_status else None,
                "advisories": result.advisories,
            })
        except (LedgerPipelineError, ValueError, KeyError) as e:
            row.update({"success": False, "message": str(e)})
        outcomes.append(row)

    for publisher in publishers.values():
        publisher.cleanup()
    return outcomes


def main():
    parser = argparse.ArgumentParser(description="Replay POS events through the ledger pipeline")
    parser.add_argument("events", help="JSON or JSON-lines file of events")
    parser.add_argument("--database", help="SQLite database path (default: LEDGER_DATABASE_PATH)")
    parser.add_argument("--env-file", help="Path to a .env file")
    parser.add_argument("--no-simulated", action="store_true", help="Disable simulated-write fallback")
    parser.add_argument("--json", action="store_true", help="Print outcomes as JSON")
    args = parser.parse_args()

    config = load_config(Path(args.env_file) if args.env_file else None)
    if args.database or args.no_simulated:
        config = config.with_database(
            args.database or config.persistence.database_path,
            allow_simulated_writes=False if args.no_simulated else None,
        )
    configure_logging(level=config.log_level_value, json_format=config.json_logs)

    audit = AuditLogger()
    if config.audit_dir:
        audit.add_backend(JSONFileAuditBackend(Path(config.audit_dir)))

    outcomes = asyncio.run(replay(load_events(Path(args.events)), config, audit))
    failures = sum(1 for row in outcomes if not row["success"])

    if args.json:
        print(json.dumps({"outcomes": outcomes, "metrics": get_metrics().get_summary()}, indent=2, default=str))
    else:
        for row in outcomes:
            status = "OK  " if row["success"] else "FAIL"
            journal = row.get("journal_number") or "-"
            print(f"{status} #{row['index']:<4} {str(row['type']):<18} {journal:<18} {row['message']}")
            for advisory in row.get("advisories") or []:
                print(f"       advisory: {advisory}")
        print(f"\n{len(outcomes) - failures}/{len(outcomes)} events recorded")

    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
