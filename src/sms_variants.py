"""
Per-SMS export readers.

Each reader turns an already-parsed table (list of rows, each a list of cell
strings) into BillingRecords. Column presence is checked by header name; only
the headerless Kamar exports fall back to a fixed positional header list.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from billing_models import BillingRecord, ChargeMetadata
from errors import MissingColumnsError, UnknownReaderError
from payable_names import normalize_payable_name, year_from_ttgrid

logger = logging.getLogger(__name__)

Table = Sequence[Sequence[str]]


@dataclass(frozen=True)
class VariantConfig:
    name: str
    reader: str = ""
    id_based: bool = False
    matcher_policy: Optional[str] = "exact_name_trust"
    roster_required: bool = True
    name_format: str = "columns"
    donation_keywords: Tuple[str, ...] = ()
    donations_gst_exempt: bool = False
    default_ledger_code: str = ""
    default_category: str = ""
    match_threshold: float = 0.7
    suggestion_threshold: float = 0.6
    suggestion_limit: int = 5
    staff_keywords: Tuple[str, ...] = ()
    pre_enrolment_keywords: Tuple[str, ...] = ()
    excluded_message: str = ""
    headers: Tuple[str, ...] = field(default=(), compare=False)

    @classmethod
    def from_dict(cls, name: str, data: Dict) -> "VariantConfig":
        matching = data.get("matching", {}) or {}
        payables = data.get("payables", {}) or {}
        filters = data.get("filters", {}) or {}
        return cls(
            name=name,
            reader=(data.get("reader") or name).strip().lower(),
            id_based=bool(data.get("id_based", False)),
            matcher_policy=data.get("matcher_policy"),
            roster_required=bool(data.get("roster_required", True)),
            name_format=data.get("name_format", "columns"),
            donation_keywords=tuple(k.lower() for k in payables.get("donation_keywords", [])),
            donations_gst_exempt=bool(payables.get("donations_gst_exempt", False)),
            default_ledger_code=payables.get("default_ledger_code", "") or "",
            default_category=payables.get("default_category", "") or "",
            match_threshold=float(matching.get("match_threshold", 0.7)),
            suggestion_threshold=float(matching.get("suggestion_threshold", 0.6)),
            suggestion_limit=int(matching.get("suggestion_limit", 5)),
            staff_keywords=tuple(k.lower() for k in filters.get("staff_keywords", [])),
            pre_enrolment_keywords=tuple(k.lower() for k in filters.get("pre_enrolment_keywords", [])),
            excluded_message=filters.get("excluded_message", "") or "",
            headers=tuple(data.get("headers", []) or ()),
        )

    @property
    def thresholds(self) -> Dict:
        return {
            "match_threshold": self.match_threshold,
            "suggestion_threshold": self.suggestion_threshold,
            "suggestion_limit": self.suggestion_limit,
        }


def parse_amount(value) -> Decimal:
    """Money cell to Decimal; anything unreadable counts as zero."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    cleaned = re.sub(r"[^\d.\-]", "", str(value or "").strip())
    if not cleaned or cleaned in ("-", ".", "-."):
        return Decimal("0")
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return Decimal("0")


def _is_number(value: str) -> bool:
    cleaned = (value or "").strip()
    if not cleaned:
        return False
    try:
        Decimal(cleaned)
    except InvalidOperation:
        return False
    return True


def _cells(row: Sequence[str]) -> List[str]:
    return [str(c if c is not None else "").strip() for c in row]


def _is_blank(row: Sequence[str]) -> bool:
    return all(not c for c in _cells(row))


def _require(header: Sequence[str], required: Sequence[str], source: str):
    missing = [name for name in required if name not in header]
    if missing:
        raise MissingColumnsError(missing, source)


def filename_year(file_name: str) -> str:
    match = re.search(r"\b(20\d{2})\b", file_name or "")
    return match.group(1) if match else ""


# ---------------------------------------------------------------------------
# Kamar
# ---------------------------------------------------------------------------

KAMAR_HEADERS = (
    "student_id", "Payer_Name_Cached", "zc_Level_LiveGrid", "zc_Tutor_LiveGrid",
    "House_Cached", "zc_LeftDate", "zc_Title_Overide", "Title_Cached",
    "Date_Added", "zc_Amount_Total", "zc_Amount_GST", "zc_Amount_Owing",
    "zc_Amount_Owing_GST", "Payment_Date", "Amount_Paid", "RollOver_Student",
    "Payers__thisCharged::zc_Pays_DD_or_AP", "Account_Cached", "Department_Cached", "Notes",
)

KAMAR_REQUIRED = (
    "student_id", "Payer_Name_Cached", "zc_Tutor_LiveGrid", "zc_LeftDate",
    "Title_Cached", "Date_Added", "zc_Amount_Total", "zc_Amount_Owing",
    "zc_Amount_Owing_GST", "Account_Cached", "Department_Cached",
)


def _kamar_has_header(first_row: Sequence[str]) -> bool:
    cells = _cells(first_row)
    return "student_id" in cells and "Title_Cached" in cells


def read_kamar_tables(tables: Sequence[Table], headers: Sequence[str] = KAMAR_HEADERS) -> List[BillingRecord]:
    """Read one or more Kamar 'charged' exports; headerless files get ``headers`` prepended."""
    records: List[BillingRecord] = []
    for table in tables:
        rows = [r for r in table if not _is_blank(r)]
        if not rows:
            continue
        if _kamar_has_header(rows[0]):
            header, body = _cells(rows[0]), rows[1:]
        else:
            header, body = list(headers), rows
        _require(header, KAMAR_REQUIRED, "Kamar export")

        for row in body:
            cells = _cells(row)
            values = {h: (cells[i] if i < len(cells) else "") for i, h in enumerate(header)}
            total = values.get("zc_Amount_Total", "")
            records.append(BillingRecord(
                row_number=len(records) + 1,
                display_name=values["Payer_Name_Cached"],
                room=values["zc_Tutor_LiveGrid"],
                year=values.get("zc_Level_LiveGrid", ""),
                item_title=values["Title_Cached"],
                item_date=values["Date_Added"],
                amount=parse_amount(values["zc_Amount_Owing"]),
                price=parse_amount(total) if total else None,
                student_id=values["student_id"],
                tutor=values["zc_Tutor_LiveGrid"],
                left_date=values["zc_LeftDate"],
                ledger=values["Account_Cached"],
                category=values["Department_Cached"],
                gst_exempt=not _is_number(values["zc_Amount_Owing_GST"]),
                raw=values,
            ))
    logger.info("Read %d Kamar rows from %d file(s)", len(records), len(tables))
    return records


# Kamar "charges" definitions export, headerless with fixed positions
CHARGES_HEADERS = (
    "Account", "Department", "Amount_Donation", "Amount_GST_Yes", "Amount_GST_No",
    "Charge_Criteria", "Charge_Types", "Charge_Value", "Code", "Set",
    "RollOver_Fee", "RollOver_Student", "Title", "TTGrid", "Type",
    "zc_Amount_GST", "zc_Amount_GST_Excl", "zc_Amount_Total",
    "zc_Sum_Amount_Total", "zc_Sum_Amount_Paid", "zc_Sum_Amount_Owing",
    "Notes", "zc_Count_Payees",
)


def _charges_has_header(first_row: Sequence[str]) -> bool:
    cells = _cells(first_row)
    return "Account" in cells and "Department" in cells and ("Title" in cells or "TTGrid" in cells)


def read_charges_table(table: Table) -> Dict[Tuple[str, str], ChargeMetadata]:
    """Aggregate charge definitions by (title, year).

    First non-empty account/department/GST amount wins. A blank or non-positive
    total becomes a placeholder of 1 until a positive total shows up.
    """
    rows = [r for r in table if not _is_blank(r)]
    if not rows:
        return {}
    if _charges_has_header(rows[0]):
        header = [c.lower() for c in _cells(rows[0])]
        body = rows[1:]
    else:
        header = [c.lower() for c in CHARGES_HEADERS]
        body = rows
    index = {name: i for i, name in enumerate(header)}

    charges: Dict[Tuple[str, str], ChargeMetadata] = {}
    for row in body:
        cells = _cells(row)

        def get(column: str) -> str:
            i = index.get(column.lower())
            return cells[i] if i is not None and i < len(cells) else ""

        title = get("Title")
        year = year_from_ttgrid(get("TTGrid"))
        if not title or not year:
            continue

        key = (title, year)
        entry = charges.get(key)
        if entry is None:
            entry = ChargeMetadata(
                title=title,
                year=year,
                payable_name=normalize_payable_name(title, f"01/01/{year}").name,
            )
            charges[key] = entry

        entry.account = entry.account or get("Account")
        entry.department = entry.department or get("Department")
        entry.gst_amount = entry.gst_amount or get("zc_Amount_GST")

        total = parse_amount(get("zc_Amount_Total"))
        if total > 0:
            if entry.total is None or entry.total_is_placeholder:
                entry.total = total
                entry.total_is_placeholder = False
        elif entry.total is None:
            entry.total = Decimal("1")
            entry.total_is_placeholder = True

        if get("Amount_Donation"):
            entry.donation_present = True

    logger.info("Built charges lookup with %d unique keys", len(charges))
    return charges


# ---------------------------------------------------------------------------
# Hero
# ---------------------------------------------------------------------------

HERO_REQUIRED = (
    "Date", "Ledger", "Line Item", "Description", "Last Name", "First Name",
    "Room", "Year Level", "Debit", "Credit", "Balance",
)
_LEDGER_CODE_RE = re.compile(r"^(\d+)")


def split_ledger(ledger: str) -> Tuple[str, str]:
    """'21200 - Camp' -> ('21200', 'Camp')."""
    ledger = (ledger or "").strip()
    match = _LEDGER_CODE_RE.match(ledger)
    code = match.group(1) if match else ""
    parts = ledger.split("-")
    category = "-".join(parts[1:]).strip() if len(parts) > 1 else ledger
    return code, category


def read_hero_table(table: Table) -> List[BillingRecord]:
    rows = [r for r in table if not _is_blank(r)]
    if len(rows) < 2:
        raise MissingColumnsError(list(HERO_REQUIRED), "Hero export (file is empty)")
    header = _cells(rows[0])
    _require(header, HERO_REQUIRED, "Hero export")
    col = {name: header.index(name) for name in HERO_REQUIRED}

    records = []
    for row in rows[1:]:
        cells = _cells(row)
        if len(cells) < len(header):
            # kept so the zero-owing or name stages record why it goes
            logger.warning("Hero row %d has %d of %d cells", len(records) + 1, len(cells), len(header))

        def get(name: str) -> str:
            i = col[name]
            return cells[i] if i < len(cells) else ""

        line_item, description = get("Line Item"), get("Description")
        code, category = split_ledger(get("Ledger"))
        first, last = get("First Name"), get("Last Name")
        records.append(BillingRecord(
            row_number=len(records) + 1,
            display_name=f"{first} {last}".strip(),
            first_name=first,
            last_name=last,
            room=get("Room"),
            year=get("Year Level"),
            item_title=f"{line_item} - {description}".strip() if description else line_item,
            item_date=get("Date"),
            amount=parse_amount(get("Balance")),
            price=parse_amount(get("Debit")),
            ledger=code,
            category=category,
            raw=dict(zip(header, cells)),
        ))
    logger.info("Read %d Hero rows", len(records))
    return records


# ---------------------------------------------------------------------------
# Edge
# ---------------------------------------------------------------------------

# header name fragments, first header containing any fragment wins
EDGE_COLUMNS = {
    "student": ("student",),
    "room": ("room", "form"),
    "year": ("year",),
    "date_assigned": ("date",),
    "billable_item": ("billable", "item"),
    "amount_owing": ("amount", "owing"),
}


def _find_column(header: Sequence[str], fragments: Sequence[str]) -> int:
    for i, name in enumerate(header):
        lowered = name.lower()
        if any(f in lowered for f in fragments):
            return i
    return -1


def read_edge_table(table: Table) -> List[BillingRecord]:
    rows = [r for r in table if not _is_blank(r)]
    if len(rows) < 2:
        raise MissingColumnsError(list(EDGE_COLUMNS), "Edge export (file is empty)")
    header = [c.strip('"') for c in _cells(rows[0])]
    col = {key: _find_column(header, fragments) for key, fragments in EDGE_COLUMNS.items()}
    missing = [key for key, i in col.items() if i == -1]
    if missing:
        raise MissingColumnsError(missing, "Edge export")

    records = []
    for row in rows[1:]:
        cells = _cells(row)

        def get(key: str) -> str:
            i = col[key]
            return cells[i] if i < len(cells) else ""

        student = get("student")
        if len(cells) < len(header) or not student:
            logger.warning("Edge row %d is incomplete (%d cells, student %r)", len(records) + 1, len(cells), student)
        records.append(BillingRecord(
            row_number=len(records) + 1,
            display_name=student,
            room=get("room"),
            year=get("year"),
            item_title=get("billable_item"),
            item_date=get("date_assigned"),
            amount=parse_amount(get("amount_owing")),
            raw=dict(zip(header, cells)),
        ))
    logger.info("Read %d Edge rows", len(records))
    return records


def split_display_name(display_name: str, name_format: str) -> Optional[Tuple[str, str]]:
    """(first, last) from the export's name cell, or None when it cannot be split."""
    display_name = (display_name or "").strip()
    if name_format == "last_comma_first":
        parts = [p.strip() for p in display_name.split(",")]
        if len(parts) < 2:
            return None
        return parts[1], parts[0]
    parts = display_name.split()
    if len(parts) < 2:
        return None
    return " ".join(parts[:-1]), parts[-1]


ReaderFn = Callable[[Sequence[Table]], List[BillingRecord]]

READERS: Dict[str, ReaderFn] = {
    "kamar": read_kamar_tables,
    "hero": lambda tables: [r for t in tables for r in read_hero_table(t)],
    "edge": lambda tables: [r for t in tables for r in read_edge_table(t)],
}


def read_export(variant: VariantConfig, tables: Sequence[Table]) -> List[BillingRecord]:
    reader_name = variant.reader or variant.name
    if reader_name == "kamar" and variant.headers:
        return read_kamar_tables(tables, variant.headers)
    try:
        reader = READERS[reader_name]
    except KeyError:
        raise UnknownReaderError(variant.name, reader_name, list(READERS)) from None
    records = reader(tables)
    # keep row numbers unique across concatenated files
    return [r if r.row_number == i else replace(r, row_number=i) for i, r in enumerate(records, start=1)]
