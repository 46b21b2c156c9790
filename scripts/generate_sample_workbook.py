#!/usr/bin/env python3
"""Generate a sample route workbook (.xlsx) for demos and dry runs."""

import argparse
import sys
from datetime import date
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from loan_import.generators import SampleWorkbookGenerator
from loan_import.logging import setup_logging


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Generate a sample route workbook")
    parser.add_argument("output", type=Path, help="Path of the .xlsx file to write")
    parser.add_argument("--route", default="RUTA1", help="Route name (default: RUTA1)")
    parser.add_argument("--loans", type=int, default=30, help="Number of loan rows (default: 30)")
    parser.add_argument("--leads", type=int, default=3, help="Number of route leads (default: 3)")
    parser.add_argument("--renewal-rate", type=float, default=0.3, help="Renewal probability (default: 0.3)")
    parser.add_argument("--start", type=date.fromisoformat, default=date(2024, 1, 8), help="First sign date")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    setup_logging("INFO")
    generator = SampleWorkbookGenerator(
        route_name=args.route.upper(),
        num_loans=args.loans,
        num_leads=args.leads,
        renewal_rate=args.renewal_rate,
        start_date=args.start,
        seed=args.seed,
    )
    path = generator.save(args.output)
    print(f"Sample workbook written to {path}")


if __name__ == "__main__":
    main()
