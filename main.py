#!/usr/bin/env python3
"""
SecureCoda scanner

Walks every Coda doc the API token can see, flags stale documents, public or
external sharing, and sensitive keywords in table rows and pages, then prints
a summary. Can also run a remediation action against a single doc.

Usage:
    python main.py scan [--concurrency N] [--json]
    python main.py remediate <doc_id> [--action delete|remove_public_access]

The API token comes from CODA_API_TOKEN (or coda_token.txt in the project dir).
"""

import json
import logging
import sys

from secure_coda.coda_client import CodaClient
from secure_coda.config import LOG_LEVEL, SCAN_CONCURRENCY
from secure_coda.output import generate_summary, print_rich_summary
from secure_coda.remediation import ACTIONS, RemediationService
from secure_coda.scanner import Scanner


def _usage(code: int = 0) -> None:
    print("Usage: python main.py scan [--concurrency N] [--json]")
    print("       python main.py remediate <doc_id> [--action delete|remove_public_access]")
    print("\nExamples:")
    print("  python main.py scan                               # Full scan, rich summary")
    print("  python main.py scan --concurrency 8 --json        # Machine-readable alerts")
    print("  python main.py remediate AbCDeFGH --action remove_public_access")
    sys.exit(code)


def run_scan_command(args: list[str]) -> int:
    concurrency = SCAN_CONCURRENCY
    as_json = False
    i = 0
    while i < len(args):
        if args[i] == "--concurrency" and i + 1 < len(args):
            try:
                concurrency = int(args[i + 1])
            except ValueError:
                print(f"Error: --concurrency must be an integer (got '{args[i + 1]}')")
                return 1
            i += 2
        elif args[i] == "--json":
            as_json = True
            i += 1
        else:
            print(f"Error: unknown argument '{args[i]}'")
            return 1

    scanner = Scanner(CodaClient(), concurrency=concurrency)

    def progress(step, total, msg):
        if not as_json:
            print(msg)

    report = scanner.run_scan(progress_callback=progress)
    alerts = scanner.store.list()

    if as_json:
        print(json.dumps({
            "report": report.to_dict(),
            "alerts": [a.to_dict() for a in alerts],
        }, indent=2, ensure_ascii=False))
    else:
        print_rich_summary(generate_summary(alerts), alerts, report.to_dict())
    return 0


def run_remediate_command(args: list[str]) -> int:
    doc_id = None
    action = "delete"
    i = 0
    while i < len(args):
        if args[i] == "--action" and i + 1 < len(args):
            action = args[i + 1]
            if action not in ACTIONS:
                print(f"Error: --action must be one of {', '.join(ACTIONS)} (got '{action}')")
                return 1
            i += 2
        else:
            doc_id = args[i]
            i += 1

    if not doc_id:
        print("Error: remediate needs a doc id")
        return 1

    result = RemediationService(CodaClient()).remediate(doc_id, action)
    print(("OK: " if result.success else "FAILED: ") + result.message)
    return 0 if result.success else 1


def main() -> None:
    logging.basicConfig(level=LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")

    args = sys.argv[1:]
    if not args or args[0] in ("-h", "--help"):
        _usage(0)

    command, rest = args[0], args[1:]
    if command == "scan":
        sys.exit(run_scan_command(rest))
    if command == "remediate":
        sys.exit(run_remediate_command(rest))

    print(f"Error: unknown command '{command}'")
    _usage(1)


if __name__ == "__main__":
    main()
