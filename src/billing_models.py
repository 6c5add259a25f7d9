from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Dict, FrozenSet, List, Optional, Tuple, Union

if TYPE_CHECKING:
    from roster_index import RosterIndex
    from sms_variants import VariantConfig


@dataclass(frozen=True)
class RosterEntry:
    student_id: str
    first_name: str
    last_name: str
    room: str = ""
    year_level: str = ""

    @property
    def base_id(self) -> str:
        return self.student_id.split(".", 1)[0]

    def describe(self) -> str:
        return f"{self.first_name} {self.last_name} ({self.room or 'No room'}, Year {self.year_level or '?'})"


@dataclass(frozen=True)
class BillingRecord:
    """One charge row from an SMS export, reduced to the fields the pipeline reads.

    Stages never mutate a record; they derive a new one with dataclasses.replace.
    """
    row_number: int
    display_name: str = ""
    first_name: str = ""
    last_name: str = ""
    room: str = ""
    year: str = ""
    item_title: str = ""
    item_date: str = ""
    amount: Decimal = Decimal("0")
    price: Optional[Decimal] = None  # per-unit charge when the export carries one
    student_id: str = ""
    tutor: str = ""
    left_date: str = ""
    ledger: str = ""
    category: str = ""
    gst_exempt: Optional[bool] = None
    payable_name: str = ""
    payable_year: str = ""
    raw: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def unit_price(self) -> Decimal:
        return self.price if self.price is not None else self.amount

    @property
    def name(self) -> str:
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.display_name


@dataclass(frozen=True)
class Suggestion:
    entry: RosterEntry
    similarity: float

    @property
    def details(self) -> str:
        return f"{self.entry.describe()} - {round(self.similarity * 100)}% match"


@dataclass(frozen=True)
class Matched:
    student_id: str
    entry: Optional[RosterEntry] = None
    similarity: Optional[float] = None


@dataclass(frozen=True)
class Ambiguous:
    candidates: Tuple[RosterEntry, ...]
    reason: str


@dataclass(frozen=True)
class NotFound:
    reason: str
    suggestions: Tuple[Suggestion, ...] = ()


MatchResult = Union[Matched, Ambiguous, NotFound]


class RemovalReason(str, Enum):
    DESCRIPTION_EXCLUDED = "Description excluded"
    ZERO_OWING = "Zero/blank owing amount"
    PAST_LEFT_DATE = "Past left date"
    STAFF = "Staff/Admin"
    PRE_ENROLMENT = "Pre-enrollment"
    INVALID_ID = "Invalid student ID"
    NOT_IN_ROSTER = "Not in current seed roll"
    EXCLUDED_STUDENT = "Student excluded"
    INVALID_NAME = 'Invalid name format (expected "Last Name, First Name")'
    STUDENT_NOT_FOUND = "Student not found on seed roll"
    FILTERED_PAYABLE = "Filtered by payable name"


@dataclass(frozen=True)
class RemovedRecord:
    record: BillingRecord
    reason: RemovalReason
    detail: str = ""
    suggestions: Tuple[Suggestion, ...] = ()

    @property
    def message(self) -> str:
        return self.detail or self.reason.value

    @property
    def suggestion_text(self) -> str:
        if not self.suggestions:
            return "None"
        return " | ".join(s.details for s in self.suggestions)


@dataclass(frozen=True)
class PendingReview:
    """A row held back because more than one roster entry could own it."""
    record: BillingRecord
    candidates: Tuple[RosterEntry, ...]
    reason: str
    fallback_year: str = ""

    @property
    def key(self) -> int:
        return self.record.row_number

    def candidate_ids(self) -> List[str]:
        return [c.student_id for c in self.candidates]


class GstStatus(str, Enum):
    GST = "GST"
    EXEMPT = "GST exempt"


@dataclass
class ChargeMetadata:
    """Authoritative charge definition from a secondary charges export, keyed by (title, year)."""
    title: str
    year: str
    payable_name: str
    account: str = ""
    department: str = ""
    gst_amount: str = ""
    total: Optional[Decimal] = None
    total_is_placeholder: bool = False
    donation_present: bool = False


@dataclass(frozen=True)
class Payable:
    name: str
    gst_status: GstStatus
    is_donation: bool
    ledger_code: str
    price: Decimal
    category: str = ""


@dataclass(frozen=True)
class CategoryMapping:
    payable_name: str
    category: str


@dataclass(frozen=True)
class OutstandingCharge:
    student_id: str
    payable_name: str
    amount: Decimal
    caregiver_id: str = ""


@dataclass
class RunContext:
    """Everything one conversion run needs; nothing is shared between runs."""
    variant: "VariantConfig"
    roster: Optional["RosterIndex"] = None
    excluded_ids: FrozenSet[str] = frozenset()
    excluded_keywords: Tuple[str, ...] = ()
    fallback_suffix: str = ""
    today: date = field(default_factory=date.today)
    initial_year: str = ""
    charges: Dict[Tuple[str, str], ChargeMetadata] = field(default_factory=dict)
    school_name: str = ""


@dataclass
class PipelineOutcome:
    survivors: List[BillingRecord] = field(default_factory=list)
    removed: List[RemovedRecord] = field(default_factory=list)
    pending: List[PendingReview] = field(default_factory=list)


@dataclass
class RunResult:
    """Outcome of one conversion run; the output tables are rendered from it."""
    context: RunContext
    original_count: int = 0
    raw_header: List[str] = field(default_factory=list)
    raw_rows: List[List[str]] = field(default_factory=list)
    processed: List[BillingRecord] = field(default_factory=list)
    removed: List[RemovedRecord] = field(default_factory=list)
    pending: List[PendingReview] = field(default_factory=list)
    payables: List[Payable] = field(default_factory=list)
    categories: List[CategoryMapping] = field(default_factory=list)
    outstanding: List[OutstandingCharge] = field(default_factory=list)
    sources: Dict[str, int] = field(default_factory=dict)

    @property
    def variant(self) -> "VariantConfig":
        return self.context.variant
