# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

"""Moves a workspace in or out of a running schedule server.

Examples:
    python scripts/workspace_transfer.py --email me@example.com export -o backup.zip
    python scripts/workspace_transfer.py --email me@example.com import-backup backup.zip
    python scripts/workspace_transfer.py --email me@example.com migrate notion.zip

The password is read from SCHEDULE_PASSWORD, or prompted for.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from pathlib import Path

from schedule_client import ApiRequestError, ScheduleApiClient

logger = logging.getLogger(__name__)


def _export(client: ScheduleApiClient, args: argparse.Namespace) -> int:
    data = client.export_backup()
    Path(args.output).write_bytes(data)
    logger.info("Wrote %d bytes to %s", len(data), args.output)
    return 0


def _import_backup(client: ScheduleApiClient, args: argparse.Namespace) -> int:
    path = Path(args.archive)
    report = client.import_backup(path.read_bytes(), filename=path.name)
    logger.info("Restored %d items and %d files", report.imported_items, report.imported_files)
    for error in report.errors:
        logger.warning("  %s", error)
    return 1 if report.errors and report.imported_items == 0 else 0


def _migrate(client: ScheduleApiClient, args: argparse.Namespace) -> int:
    path = Path(args.archive)
    report = client.import_migration(path.read_bytes(), filename=path.name)
    logger.info("Imported %d items and %d files", report.persisted_items, report.persisted_files)
    for pattern in report.detected_patterns:
        logger.info("  detected %s", pattern)
    for failure in report.failures:
        logger.warning("  %s", failure)
    for hint in report.manual_fix_hints:
        logger.info("  hint: %s", hint)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Export, restore or migrate a schedule workspace."
    )
    parser.add_argument(
        "--base-url",
        default=os.environ.get("SCHEDULE_API_BASE", "http://localhost:8080"),
        help="Server root, without the /api prefix.",
    )
    parser.add_argument("--email", required=True, help="Account email.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    export = subparsers.add_parser("export", help="Download a backup ZIP.")
    export.add_argument("-o", "--output", default="backup.zip")
    export.set_defaults(handler=_export)

    restore = subparsers.add_parser(
        "import-backup", help="Replace the workspace with a backup ZIP."
    )
    restore.add_argument("archive")
    restore.set_defaults(handler=_import_backup)

    migrate = subparsers.add_parser(
        "migrate", help="Import a Notion style export or worklog CSV ZIP."
    )
    migrate.add_argument("archive")
    migrate.set_defaults(handler=_migrate)
    return parser


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    args = build_parser().parse_args(argv)
    password = os.environ.get("SCHEDULE_PASSWORD") or getpass.getpass("Password: ")

    client = ScheduleApiClient(args.base_url)
    try:
        client.login(args.email, password)
        return args.handler(client, args)
    except ApiRequestError as e:
        logger.error("Request failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
