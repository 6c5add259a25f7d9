import logging
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from billing_models import BillingRecord, CategoryMapping, ChargeMetadata, GstStatus, Payable
from sms_variants import VariantConfig

logger = logging.getLogger(__name__)

LEDGER_PREFIX = "~LDC_"
DONATION_KEYWORDS = ("donation", "koha", "charitable", "giving", "fundrais", "sponsor", "contribution")


@dataclass
class AggregateResult:
    payables: List[Payable] = field(default_factory=list)
    categories: List[CategoryMapping] = field(default_factory=list)
    sources: Dict[str, int] = field(default_factory=dict)


def choose_price(prices: Iterable[Decimal]) -> Decimal:
    """Most frequent price; ties go to the highest candidate."""
    counts = Counter(prices)
    if not counts:
        return Decimal("0")
    return max(counts, key=lambda p: (counts[p], p))


def is_donation_name(text: str, keywords: Sequence[str] = DONATION_KEYWORDS) -> bool:
    lowered = (text or "").lower()
    return any(k in lowered for k in keywords)


def ledger_code(account: str, default: str = "") -> str:
    account = (account or "").strip()
    if not account:
        return default
    return f"{LEDGER_PREFIX}{account}".split("/", 1)[0]


def _positive(value: str) -> bool:
    try:
        return Decimal((value or "").strip()) > 0
    except ArithmeticError:
        return False


def _first(values: Iterable[str]) -> str:
    for v in values:
        if v:
            return v
    return ""


def _from_charge(charge: ChargeMetadata, variant: VariantConfig) -> Payable:
    keywords = variant.donation_keywords or DONATION_KEYWORDS
    donation = charge.donation_present or is_donation_name(charge.payable_name, keywords)
    gst = GstStatus.GST if _positive(charge.gst_amount) else GstStatus.EXEMPT
    if donation and variant.donations_gst_exempt:
        gst = GstStatus.EXEMPT
    return Payable(
        name=charge.payable_name,
        gst_status=gst,
        is_donation=donation,
        ledger_code=ledger_code(charge.account, variant.default_ledger_code),
        price=charge.total if charge.total is not None else Decimal("0"),
        category=charge.department or variant.default_category,
    )


def _from_records(name: str, rows: Sequence[BillingRecord], variant: VariantConfig) -> Payable:
    keywords = variant.donation_keywords or DONATION_KEYWORDS
    category = _first(r.category for r in rows) or variant.default_category
    donation = is_donation_name(name, keywords) or is_donation_name(category, keywords)
    exempt = rows[0].gst_exempt is True or (donation and variant.donations_gst_exempt)
    return Payable(
        name=name,
        gst_status=GstStatus.EXEMPT if exempt else GstStatus.GST,
        is_donation=donation,
        ledger_code=ledger_code(_first(r.ledger for r in rows), variant.default_ledger_code),
        price=choose_price(r.unit_price for r in rows),
        category=category,
    )


def aggregate_payables(
    records: Sequence[BillingRecord],
    variant: VariantConfig,
    charges: Optional[Mapping[Tuple[str, str], ChargeMetadata]] = None,
) -> AggregateResult:
    """Collapse payable-tagged rows into one Payable per name plus category mappings.

    Charge definitions from a secondary export win for any name they cover and
    are all emitted first; names seen only in the billing rows follow, in first
    appearance order.
    """
    charges = charges or {}
    result = AggregateResult()

    by_name: "OrderedDict[str, List[BillingRecord]]" = OrderedDict()
    for r in records:
        by_name.setdefault(r.payable_name, []).append(r)

    seen = set()
    for charge in charges.values():
        if charge.payable_name in seen:
            continue
        seen.add(charge.payable_name)
        result.payables.append(_from_charge(charge, variant))
    from_secondary = len(result.payables)

    for name, rows in by_name.items():
        if name in seen:
            continue
        seen.add(name)
        result.payables.append(_from_records(name, rows, variant))

    result.categories = build_categories(records, variant, charges)

    charge_names = {c.payable_name for c in charges.values()}
    result.sources = {
        "from_secondary": from_secondary,
        "primary_only": len(result.payables) - from_secondary,
        "secondary_only": len(charge_names - set(by_name)),
        "total_unique": len(result.payables),
    }
    logger.info(
        "Built %d payables (%d from charges, %d from export only)",
        len(result.payables), result.sources["from_secondary"], result.sources["primary_only"],
    )
    return result


def build_categories(
    records: Sequence[BillingRecord],
    variant: VariantConfig,
    charges: Optional[Mapping[Tuple[str, str], ChargeMetadata]] = None,
) -> List[CategoryMapping]:
    charges = charges or {}
    mappings: List[CategoryMapping] = []
    seen = set()

    def add(name: str, category: str):
        if not name or not category or (name, category) in seen:
            return
        seen.add((name, category))
        mappings.append(CategoryMapping(name, category))

    used = set()
    for r in records:
        charge = charges.get((r.item_title, r.payable_year))
        if charge is not None and charge.department:
            used.add((charge.title, charge.year))
            add(r.payable_name, charge.department)
        else:
            add(r.payable_name, r.category or variant.default_category)

    for key, charge in charges.items():
        if key not in used:
            add(charge.payable_name, charge.department)
    return mappings
