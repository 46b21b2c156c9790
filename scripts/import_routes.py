#!/usr/bin/env python3
"""Import route workbooks into PostgreSQL (or an in-memory store).

Each ``--route NAME=WORKBOOK`` pair is imported in the order given, one
route at a time. Run summaries go to the console and, optionally, to JSON
files and a Kafka topic.
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from loan_import.config import ImporterConfig
from loan_import.exceptions import LoanImportError
from loan_import.extract import OpenpyxlWorkbook
from loan_import.logging import setup_logging
from loan_import.models import RouteSnapshot
from loan_import.pipeline import RouteImporter
from loan_import.sinks import ConsoleSink, JsonFileSink, KafkaSink
from loan_import.store import InMemoryRepository, Repository

logger = logging.getLogger(__name__)


def parse_route(value: str) -> tuple[str, Path]:
    """Parse ``NAME=WORKBOOK``."""
    name, sep, path = value.partition("=")
    if not sep or not name.strip() or not path.strip():
        raise argparse.ArgumentTypeError(f"expected NAME=WORKBOOK, got {value!r}")
    return name.strip().upper(), Path(path.strip())


async def open_repository(config: ImporterConfig, in_memory: bool) -> Repository:
    if in_memory:
        return InMemoryRepository()
    from loan_import.store.postgres import PostgresRepository

    return await PostgresRepository.connect(config.postgres.connection_string)


async def run(args: argparse.Namespace, config: ImporterConfig) -> int:
    repository = await open_repository(config, args.in_memory)
    importer = RouteImporter(repository, config)
    sinks: list = [ConsoleSink(pretty=True, max_records=args.max_records)]
    if args.output:
        sinks.append(JsonFileSink(args.output, pretty=config.output.pretty_json))
    if args.kafka:
        sinks.append(KafkaSink(config.kafka))

    failed = 0
    try:
        for route_name, path in args.route:
            snapshot = RouteSnapshot(
                route_id=route_name,
                route_name=route_name,
                lead_id=args.lead_id,
                lead_name=args.lead_name,
                assigned_at=datetime.now(),
            )
            with OpenpyxlWorkbook(path) as workbook:
                result = await importer.import_route(workbook, snapshot)
            for sink in sinks:
                sink.write_summary(result.summary)
            if not result.summary.is_reconciled or result.summary.batches_failed:
                failed += 1
    finally:
        for sink in sinks:
            sink.close()
        await repository.close()
    return 1 if failed else 0


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Import route loan workbooks")
    parser.add_argument(
        "--route",
        type=parse_route,
        action="append",
        required=True,
        metavar="NAME=WORKBOOK",
        help="Route name and its workbook; repeat for several routes",
    )
    parser.add_argument("--in-memory", action="store_true", help="Use an in-memory store (dry run)")
    parser.add_argument("--output", type=Path, default=None, help="Directory for JSON run summaries")
    parser.add_argument("--kafka", action="store_true", help="Publish run summaries to Kafka")
    parser.add_argument("--lead-id", default=None, help="Route lead stamped on the route snapshot")
    parser.add_argument("--lead-name", default=None, help="Route lead name for the snapshot")
    parser.add_argument(
        "--renewal-policy",
        choices=["skip", "standalone"],
        default=None,
        help="What to do with renewals whose previous loan is missing (default: from env or skip)",
    )
    parser.add_argument("--seed-leads", action="store_true", help="Create unmatched active leads")
    parser.add_argument("--max-records", type=int, default=20, help="Outcome rows printed per route")
    parser.add_argument("--log-level", default=None, help="Log level (default: from env or INFO)")
    parser.add_argument("--log-format", choices=["standard", "json"], default="standard")
    args = parser.parse_args()

    try:
        config = ImporterConfig.from_env()
        if args.renewal_policy or args.seed_leads:
            config.run = replace(
                config.run,
                renewal_policy=args.renewal_policy or config.run.renewal_policy,
                seed_leads=args.seed_leads or config.run.seed_leads,
            )
    except LoanImportError as e:
        parser.error(str(e))

    setup_logging(args.log_level or config.log_level, args.log_format)

    try:
        sys.exit(asyncio.run(run(args, config)))
    except LoanImportError as e:
        logger.error("Import aborted: %s", e)
        sys.exit(2)


if __name__ == "__main__":
    main()
