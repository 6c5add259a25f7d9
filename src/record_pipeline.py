"""
Ordered filter stages that turn raw billing rows into payable-tagged rows.

Every stage takes the survivors of the previous one and returns a
PipelineOutcome; a row leaves the pipeline at most once, so the removed list
always names the single stage that dropped it. Stages never raise.
"""

import logging
import re
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from billing_models import (
    Ambiguous,
    BillingRecord,
    NotFound,
    PendingReview,
    PipelineOutcome,
    RemovalReason,
    RemovedRecord,
    RunContext,
)
from payable_names import normalize_payable_name
from sms_variants import split_display_name
from student_matcher import match_student

logger = logging.getLogger(__name__)

VALID_ID_RE = re.compile(r"^\d+$|^\d+\.\d{4}$")
SUFFIX_RE = re.compile(r"^\d{4}$")
CENT = Decimal("0.01")

Stage = Callable[[List[BillingRecord], RunContext], PipelineOutcome]


def _partition(records: Iterable[BillingRecord], reject: Callable[[BillingRecord], Optional[RemovalReason]]) -> PipelineOutcome:
    outcome = PipelineOutcome()
    for record in records:
        reason = reject(record)
        if reason is None:
            outcome.survivors.append(record)
        else:
            outcome.removed.append(RemovedRecord(record, reason))
    return outcome


def parse_dmy(text: str) -> Optional[date]:
    try:
        return datetime.strptime((text or "").strip(), "%d/%m/%Y").date()
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# stages
# ---------------------------------------------------------------------------

def exclude_keywords(records: List[BillingRecord], ctx: RunContext) -> PipelineOutcome:
    keywords = [k.strip().lower() for k in ctx.excluded_keywords if k and k.strip()]
    if not keywords:
        return PipelineOutcome(survivors=list(records))

    def reject(record):
        text = record.item_title.lower()
        if any(k in text for k in keywords):
            return RemovalReason.DESCRIPTION_EXCLUDED
        return None

    return _partition(records, reject)


def drop_zero_amount(records: List[BillingRecord], ctx: RunContext) -> PipelineOutcome:
    # anything that prints as 0.00 is zero
    return _partition(records, lambda r: RemovalReason.ZERO_OWING if r.amount.quantize(CENT) == 0 else None)


def drop_past_left_date(records: List[BillingRecord], ctx: RunContext) -> PipelineOutcome:
    def reject(record):
        left = parse_dmy(record.left_date)
        if left is not None and left <= ctx.today:
            return RemovalReason.PAST_LEFT_DATE
        return None

    return _partition(records, reject)


def drop_staff_and_pre_enrolment(records: List[BillingRecord], ctx: RunContext) -> PipelineOutcome:
    staff = ctx.variant.staff_keywords
    pre_enrol = ctx.variant.pre_enrolment_keywords

    def reject(record):
        tutor = record.tutor.lower()
        if not tutor:
            return None
        if any(k in tutor for k in staff):
            return RemovalReason.STAFF
        if any(k in tutor for k in pre_enrol) or ("enrol" in tutor and "enrollment" not in tutor):
            return RemovalReason.PRE_ENROLMENT
        return None

    return _partition(records, reject)


def drop_invalid_ids(records: List[BillingRecord], ctx: RunContext) -> PipelineOutcome:
    def reject(record):
        student_id = record.student_id.strip()
        if student_id and not VALID_ID_RE.match(student_id):
            return RemovalReason.INVALID_ID
        return None

    return _partition(records, reject)


def append_suffix(records: List[BillingRecord], ctx: RunContext) -> PipelineOutcome:
    """Give bare numeric ids their jurisdiction suffix: roster first, then the fallback suffix."""
    fallback = (ctx.fallback_suffix or "").strip()
    if fallback and not SUFFIX_RE.match(fallback):
        logger.warning("Ignoring fallback suffix %r (expected 4 digits)", fallback)
        fallback = ""

    outcome = PipelineOutcome()
    for record in records:
        student_id = record.student_id.strip()
        if student_id and "." not in student_id:
            full_id = ctx.roster.full_id_for(student_id) if ctx.roster is not None else None
            if full_id:
                record = replace(record, student_id=full_id)
            elif fallback:
                record = replace(record, student_id=f"{student_id}.{fallback}")
        outcome.survivors.append(record)
    return outcome


def drop_not_in_roster(records: List[BillingRecord], ctx: RunContext) -> PipelineOutcome:
    if ctx.roster is None:
        return PipelineOutcome(survivors=list(records))
    ids = ctx.roster.ids
    return _partition(
        records,
        lambda r: None if r.student_id.strip() in ids else RemovalReason.NOT_IN_ROSTER,
    )


def drop_excluded_ids(records: List[BillingRecord], ctx: RunContext) -> PipelineOutcome:
    excluded = {i.strip() for i in ctx.excluded_ids if i and i.strip()}
    if not excluded:
        return PipelineOutcome(survivors=list(records))
    outcome = PipelineOutcome()
    for record in records:
        if record.student_id.strip() in excluded:
            outcome.removed.append(RemovedRecord(record, RemovalReason.EXCLUDED_STUDENT, ctx.variant.excluded_message))
        else:
            outcome.survivors.append(record)
    return outcome


def split_names(records: List[BillingRecord], ctx: RunContext) -> PipelineOutcome:
    outcome = PipelineOutcome()
    for record in records:
        if record.first_name and record.last_name:
            outcome.survivors.append(record)
            continue
        parts = split_display_name(record.display_name, ctx.variant.name_format)
        if parts is None:
            outcome.removed.append(RemovedRecord(record, RemovalReason.INVALID_NAME))
            continue
        first, last = parts
        outcome.survivors.append(replace(record, first_name=first, last_name=last))
    return outcome


def resolve_students(records: List[BillingRecord], ctx: RunContext) -> PipelineOutcome:
    """Name-based identity: Matched rows continue, NotFound is removed, Ambiguous waits for a human."""
    outcome = PipelineOutcome()
    if ctx.roster is None:
        for record in records:
            outcome.removed.append(RemovedRecord(record, RemovalReason.STUDENT_NOT_FOUND, "No seed roll loaded"))
        return outcome

    roster = ctx.roster.entries
    for record in records:
        result = match_student(
            record.first_name,
            record.last_name,
            record.room,
            record.year,
            roster,
            policy=ctx.variant.matcher_policy or "exact_name_trust",
            **ctx.variant.thresholds,
        )
        if isinstance(result, NotFound):
            outcome.removed.append(
                RemovedRecord(record, RemovalReason.STUDENT_NOT_FOUND, result.reason, result.suggestions)
            )
        elif isinstance(result, Ambiguous):
            logger.debug("Row %d needs review: %s", record.row_number, result.reason)
            outcome.pending.append(PendingReview(record, result.candidates, result.reason))
        else:
            outcome.survivors.append(replace(record, student_id=result.student_id))
    return outcome


ID_STAGES: Sequence[Stage] = (
    exclude_keywords,
    drop_zero_amount,
    drop_past_left_date,
    drop_staff_and_pre_enrolment,
    drop_invalid_ids,
    append_suffix,
    drop_not_in_roster,
    drop_excluded_ids,
)

NAME_STAGES: Sequence[Stage] = (
    exclude_keywords,
    drop_zero_amount,
    split_names,
    resolve_students,
    drop_excluded_ids,
)


def stages_for(ctx: RunContext) -> Sequence[Stage]:
    return ID_STAGES if ctx.variant.id_based else NAME_STAGES


# ---------------------------------------------------------------------------
# payable names
# ---------------------------------------------------------------------------

def assign_payable_names(records: Iterable[BillingRecord], initial_year: str = "") -> List[BillingRecord]:
    """Attach payable names in input order, carrying the last year used to rows without one."""
    named = []
    carried = initial_year or ""
    for record in records:
        result = normalize_payable_name(record.item_title, record.item_date, carried)
        if result.year:
            carried = result.year
        named.append(replace(record, payable_name=result.name, payable_year=result.year))
    return named


def _carried_year_before(row_number: int, named: Sequence[BillingRecord], initial_year: str) -> str:
    carried = initial_year or ""
    for record in named:
        if record.row_number > row_number:
            break
        if record.payable_year:
            carried = record.payable_year
    return carried


# ---------------------------------------------------------------------------
# runner
# ---------------------------------------------------------------------------

def run_pipeline(records: Sequence[BillingRecord], ctx: RunContext, stages: Optional[Sequence[Stage]] = None) -> PipelineOutcome:
    stages = stages if stages is not None else stages_for(ctx)
    result = PipelineOutcome(survivors=list(records))

    for stage in stages:
        step = stage(result.survivors, ctx)
        result.survivors = step.survivors
        result.removed.extend(step.removed)
        result.pending.extend(step.pending)
        logger.info(
            "%s: %d kept, %d removed, %d held for review",
            stage.__name__, len(step.survivors), len(step.removed), len(step.pending),
        )

    result.survivors = assign_payable_names(result.survivors, ctx.initial_year)
    result.pending = [
        replace(p, fallback_year=_carried_year_before(p.key, result.survivors, ctx.initial_year))
        for p in result.pending
    ]
    return result


def resolve(pending: Sequence[PendingReview], selections: Mapping[int, str], ctx: RunContext) -> PipelineOutcome:
    """Apply human choices to rows held for review.

    ``selections`` maps a pending row key to the chosen candidate's student id.
    Chosen rows go through the exclusion list and payable naming again; rows
    without a valid choice stay pending. Re-applying the same selections gives
    the same result.
    """
    outcome = PipelineOutcome()
    chosen: List[BillingRecord] = []
    years: Dict[int, str] = {}

    for item in pending:
        student_id = (selections.get(item.key) or "").strip()
        if not student_id:
            outcome.pending.append(item)
            continue
        if student_id not in item.candidate_ids():
            logger.warning("Row %d: %s is not one of the candidates, leaving it for review", item.key, student_id)
            outcome.pending.append(item)
            continue
        chosen.append(replace(item.record, student_id=student_id))
        years[item.key] = item.fallback_year

    kept = drop_excluded_ids(chosen, ctx)
    outcome.removed.extend(kept.removed)
    for record in kept.survivors:
        outcome.survivors.extend(assign_payable_names([record], years.get(record.row_number, "")))
    return outcome


def filter_payable_names(records: Sequence[BillingRecord], names: Iterable[str]) -> PipelineOutcome:
    """Drop processed rows whose payable name is listed."""
    names = {n.strip() for n in names if n and n.strip()}
    return _partition(records, lambda r: RemovalReason.FILTERED_PAYABLE if r.payable_name in names else None)
