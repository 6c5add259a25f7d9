import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

import converter
from config_loader import load_variant_config
from errors import ConfigError
from table_io import parse_id_list, parse_keyword_list, parse_table, read_table, read_text


def setup_logging(debug: bool) -> None:
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(logging.DEBUG if debug else logging.INFO)
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)-7s | %(name)s | %(message)s", datefmt="%H:%M:%S"))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)


def _read_optional(path: Optional[str]) -> str:
    return read_text(path) if path else ""


def read_selections(path: str) -> Dict[int, str]:
    """Manual review choices: CSV with ``row`` and ``student_id`` columns."""
    table = parse_table(read_text(path))
    if not table:
        return {}
    header = [c.strip().lower() for c in table[0]]
    try:
        row_col, id_col = header.index("row"), header.index("student_id")
    except ValueError:
        raise ConfigError(f"{path}: expected 'row' and 'student_id' columns") from None
    selections = {}
    for cells in table[1:]:
        if len(cells) <= max(row_col, id_col):
            continue
        row, student_id = cells[row_col].strip(), cells[id_col].strip()
        if row.isdigit() and student_id:
            selections[int(row)] = student_id
    return selections


def print_summary(result, written: List[Path]) -> None:
    summary = converter.stats(result)
    print(f"📄 {result.variant.name}: {summary['original']} rows read")
    for reason, count in sorted(summary["removed"].items()):
        print(f"   - {reason}: {count}")
    print(f"✅ {summary['final']} outstanding charges, {len(result.payables)} payables")
    sources = summary["payable_sources"]
    if sources.get("from_secondary"):
        print(f"   payables from charges file: {sources['from_secondary']}, export only: {sources['primary_only']}")
    if summary["pending_review"]:
        print(f"⚠️  {summary['pending_review']} row(s) need manual review (see the review file)")
    duplicates = converter.duplicate_payables(result)
    if duplicates:
        print(f"⚠️  Students charged more than once for: {', '.join(duplicates)}")
    for path in written:
        print(f"   wrote {path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Convert SMS billing exports into payables / categories / outstandings CSVs",
    )
    parser.add_argument("exports", nargs="+", help="billing export file(s) (CSV or TSV)")
    parser.add_argument("--variant", default=os.getenv("SMS_VARIANT", "kamar"), help="kamar, hero or edge")
    parser.add_argument("--roster", help="seed roll file (JSON or tab/comma separated)")
    parser.add_argument("--charges", help="Kamar charges definitions export")
    parser.add_argument("--exclude-ids", help="student ids to skip (one per line, or CSV with student_id)")
    parser.add_argument("--exclude-keywords", help="item description keywords to skip, one per line")
    parser.add_argument("--moe-fallback", default=os.getenv("MOE_FALLBACK", ""), help="4-digit suffix for bare ids")
    parser.add_argument("--school", default=os.getenv("SCHOOL_NAME", ""), help="school name for output file names")
    parser.add_argument("--resolve", help="CSV of manual review choices (row, student_id)")
    parser.add_argument("--filter-payables", help="payable names to drop after processing, one per line")
    parser.add_argument("--config", help="variants YAML (default: config/variants.yml)")
    parser.add_argument("--out-dir", default="output")
    parser.add_argument("--env-file", default=".env")
    parser.add_argument("--debug", action="store_true")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    # .env first so its values become argparse defaults
    argv = sys.argv[1:] if argv is None else list(argv)
    env_file = ".env"
    if "--env-file" in argv[:-1]:
        env_file = argv[argv.index("--env-file") + 1]
    if os.path.exists(env_file):
        load_dotenv(env_file)

    args = build_parser().parse_args(argv)
    setup_logging(args.debug)

    try:
        variant = load_variant_config(args.variant, args.config)
        result = converter.convert(
            variant,
            [read_table(p) for p in args.exports],
            roster_text=_read_optional(args.roster) or None,
            charges_table=read_table(args.charges) if args.charges else None,
            excluded_ids=parse_id_list(_read_optional(args.exclude_ids)),
            excluded_keywords=parse_keyword_list(_read_optional(args.exclude_keywords)),
            fallback_suffix=args.moe_fallback,
            school_name=args.school,
            export_name=Path(args.exports[0]).name,
        )
        if args.resolve:
            result = converter.apply_resolutions(result, read_selections(args.resolve))
    except ConfigError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    if args.filter_payables:
        result = converter.filter_payables(result, parse_keyword_list(read_text(args.filter_payables)))

    written = converter.write_outputs(result, args.out_dir)
    print_summary(result, written)
    return 0


if __name__ == "__main__":
    sys.exit(main())
