"""
One conversion run: export tables in, import-ready tables out.

convert() is the only place that raises (ConfigError subclasses, before any
row is processed). Everything after that is recorded on the RunResult, and
apply_resolutions() / filter_payables() return new results instead of
changing the one they are given.
"""

import logging
from collections import Counter, OrderedDict
from dataclasses import replace
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from billing_models import (
    OutstandingCharge,
    RemovedRecord,
    RunContext,
    RunResult,
)
from errors import ConfigError
from payable_aggregator import aggregate_payables
from record_pipeline import filter_payable_names, resolve, run_pipeline
from roster_index import RosterIndex
from sms_variants import Table, VariantConfig, filename_year, read_charges_table, read_export
from table_io import output_filename, write_table

logger = logging.getLogger(__name__)

PAYABLE_HEADERS = [
    "product_name", "product_remarks2", "product_gst_status", "product_is_donation",
    "product_ledgercode_or_remarks1", "product_price_in_dollars", "is_voluntary",
]
CATEGORY_HEADERS = ["proto_payable_name", "category"]
OUTSTANDING_HEADERS = ["student_id", "payable_name", "amount", "caregiver_id"]
PROCESSED_HEADERS = [
    "student_id", "first_name", "last_name", "room", "year", "payable_name", "amount_owing", "date_assigned",
]
REVIEW_HEADERS = ["row", "name", "room", "year", "item", "amount", "reason", "candidates"]


def format_money(value: Optional[Decimal]) -> str:
    if value is None:
        return ""
    return f"{value:.2f}"


def convert(
    variant: VariantConfig,
    tables: Sequence[Table],
    roster_text: Optional[str] = None,
    charges_table: Optional[Table] = None,
    excluded_ids: Iterable[str] = (),
    excluded_keywords: Iterable[str] = (),
    fallback_suffix: str = "",
    school_name: str = "",
    export_name: str = "",
    today: Optional[date] = None,
) -> RunResult:
    roster = RosterIndex.from_text(roster_text) if roster_text and roster_text.strip() else None
    if roster is None:
        if variant.roster_required:
            raise ConfigError(f"A seed roll is required to convert {variant.name} exports")
        logger.warning("No seed roll loaded; roster membership checks are skipped")

    records = read_export(variant, tables)
    charges = read_charges_table(charges_table) if charges_table else {}

    ctx = RunContext(
        variant=variant,
        roster=roster,
        excluded_ids=frozenset(i.strip() for i in excluded_ids if i and i.strip()),
        excluded_keywords=tuple(excluded_keywords),
        fallback_suffix=fallback_suffix or "",
        today=today or date.today(),
        initial_year=filename_year(export_name),
        charges=charges,
        school_name=school_name or "",
    )

    outcome = run_pipeline(records, ctx)

    raw_header = list(records[0].raw) if records else []
    result = RunResult(
        context=ctx,
        original_count=len(records),
        raw_header=raw_header,
        raw_rows=[[r.raw.get(h, "") for h in raw_header] for r in records],
        processed=outcome.survivors,
        removed=outcome.removed,
        pending=outcome.pending,
    )
    _build_outputs(result)
    logger.info(
        "%s: %d rows in, %d processed, %d removed, %d pending review",
        variant.name, result.original_count, len(result.processed), len(result.removed), len(result.pending),
    )
    return result


def _build_outputs(result: RunResult) -> RunResult:
    ctx = result.context
    aggregate = aggregate_payables(result.processed, ctx.variant, ctx.charges)
    result.payables = aggregate.payables
    result.categories = aggregate.categories
    result.sources = aggregate.sources
    result.outstanding = [
        OutstandingCharge(r.student_id, r.payable_name, r.amount) for r in result.processed
    ]
    return result


def apply_resolutions(result: RunResult, selections: Mapping[int, str]) -> RunResult:
    """Resolve pending rows with externally chosen student ids and rebuild the outputs."""
    step = resolve(result.pending, selections, result.context)
    processed = sorted(result.processed + step.survivors, key=lambda r: r.row_number)
    updated = replace(
        result,
        processed=processed,
        removed=result.removed + step.removed,
        pending=step.pending,
    )
    logger.info("Resolved %d pending row(s), %d still pending", len(step.survivors) + len(step.removed), len(step.pending))
    return _build_outputs(updated)


def filter_payables(result: RunResult, names: Iterable[str]) -> RunResult:
    step = filter_payable_names(result.processed, names)
    updated = replace(result, processed=step.survivors, removed=result.removed + step.removed)
    return _build_outputs(updated)


# ---------------------------------------------------------------------------
# reporting
# ---------------------------------------------------------------------------

def stats(result: RunResult) -> Dict:
    removed_by_reason = Counter(r.reason.value for r in result.removed)
    return {
        "original": result.original_count,
        "removed": dict(removed_by_reason),
        "removed_total": len(result.removed),
        "pending_review": len(result.pending),
        "final": len(result.processed),
        "payable_sources": dict(result.sources),
    }


def duplicate_payables(result: RunResult) -> List[str]:
    """Payable names a student is charged for more than once."""
    counts = Counter((r.student_id, r.payable_name) for r in result.processed)
    names: "OrderedDict[str, None]" = OrderedDict()
    for (_, name), n in counts.items():
        if n > 1:
            names[name] = None
    return list(names)


def payables_table(result: RunResult) -> Tuple[List[str], List[List[str]]]:
    rows = []
    for p in result.payables:
        rows.append([
            p.name,
            "",
            p.gst_status.value,
            "TRUE" if p.is_donation else "FALSE",
            p.ledger_code,
            format_money(p.price),
            "yes" if p.is_donation else "no",
        ])
    return PAYABLE_HEADERS, rows


def categories_table(result: RunResult) -> Tuple[List[str], List[List[str]]]:
    return CATEGORY_HEADERS, [[c.payable_name, c.category] for c in result.categories]


def outstanding_table(result: RunResult) -> Tuple[List[str], List[List[str]]]:
    return OUTSTANDING_HEADERS, [
        [o.student_id, o.payable_name, format_money(o.amount), o.caregiver_id] for o in result.outstanding
    ]


def _removed_row(variant: str, item: RemovedRecord) -> List[str]:
    r = item.record
    if variant == "kamar":
        return [r.student_id, r.display_name, r.tutor, r.item_title, format_money(r.amount), r.payable_name, item.message]
    if variant == "hero":
        return [r.last_name, r.first_name, r.room, r.year, format_money(r.amount), item.message, item.suggestion_text]
    return [r.first_name, r.last_name, r.room, r.year, r.item_title, format_money(r.amount), item.message, item.suggestion_text]


REMOVED_HEADERS = {
    "kamar": ["student_id", "payer_name", "tutor", "title", "amount_owing", "payable_name", "removal_reason"],
    "hero": ["Last Name", "First Name", "Room", "Year Level", "Amount", "Reason", "Suggestions"],
    "edge": ["First Name", "Last Name", "Room", "Year", "Billable Item", "Amount", "Reason", "Suggestions"],
}


def removed_table(result: RunResult) -> Tuple[List[str], List[List[str]]]:
    name = result.variant.reader or result.variant.name
    header = REMOVED_HEADERS.get(name, REMOVED_HEADERS["edge"])
    return header, [_removed_row(name, item) for item in result.removed]


def processed_table(result: RunResult) -> Tuple[List[str], List[List[str]]]:
    return PROCESSED_HEADERS, [
        [r.student_id, r.first_name, r.last_name, r.room, r.year, r.payable_name, format_money(r.amount), r.item_date]
        for r in result.processed
    ]


def raw_table(result: RunResult) -> Tuple[List[str], List[List[str]]]:
    return result.raw_header, result.raw_rows


def review_table(result: RunResult) -> Tuple[List[str], List[List[str]]]:
    rows = []
    for p in result.pending:
        r = p.record
        candidates = " | ".join(f"{c.student_id}: {c.describe()}" for c in p.candidates)
        rows.append([str(p.key), r.name, r.room, r.year, r.item_title, format_money(r.amount), p.reason, candidates])
    return REVIEW_HEADERS, rows


TABLES = OrderedDict([
    ("payables", payables_table),
    ("pcats", categories_table),
    ("outstandings", outstanding_table),
    ("removed", removed_table),
    ("processed", processed_table),
    ("raw", raw_table),
])


def write_outputs(result: RunResult, out_dir, tables: Optional[Sequence[str]] = None) -> List[Path]:
    out_dir = Path(out_dir)
    school = result.context.school_name
    written = []
    for name in tables or TABLES:
        header, rows = TABLES[name](result)
        written.append(write_table(out_dir / output_filename(school, name), header, rows))
    if result.pending:
        header, rows = review_table(result)
        written.append(write_table(out_dir / output_filename(school, "review"), header, rows))
    return written
