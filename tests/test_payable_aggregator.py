import os
import sys
from decimal import Decimal

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import pytest

from billing_models import BillingRecord, CategoryMapping, ChargeMetadata, GstStatus
from config_loader import load_variant_config
from payable_aggregator import aggregate_payables, choose_price, is_donation_name, ledger_code


def row(n, name, price, ledger="", category="", gst_exempt=None, title=None, year="2025"):
    return BillingRecord(
        row_number=n,
        item_title=title or name,
        amount=Decimal(price),
        price=Decimal(price),
        ledger=ledger,
        category=category,
        gst_exempt=gst_exempt,
        payable_name=name,
        payable_year=year,
    )


@pytest.mark.parametrize("prices,expected", [
    (["5", "5", "10"], "5"),
    (["5", "5", "10", "10"], "10"),
    (["7.50"], "7.50"),
    (["3", "9", "6"], "9"),
])
def test_choose_price(prices, expected):
    assert choose_price(Decimal(p) for p in prices) == Decimal(expected)


def test_choose_price_empty():
    assert choose_price([]) == Decimal("0")


def test_ledger_code():
    assert ledger_code("4100") == "~LDC_4100"
    assert ledger_code("4100/02") == "~LDC_4100"
    assert ledger_code("", "~LDC_Default") == "~LDC_Default"
    assert ledger_code("  ") == ""


def test_is_donation_name():
    assert is_donation_name("2025 School Donation")
    assert is_donation_name("2025 Koha")
    assert is_donation_name("2025 PTA Fundraising")
    assert not is_donation_name("2025 Camp")


def test_modal_price_per_payable():
    variant = load_variant_config("edge")
    records = [row(1, "2025 Camp", "5"), row(2, "2025 Camp", "5"), row(3, "2025 Camp", "10")]
    result = aggregate_payables(records, variant)

    assert len(result.payables) == 1
    camp = result.payables[0]
    assert camp.price == Decimal("5")
    assert camp.ledger_code == "~LDC_Default"
    assert camp.gst_status is GstStatus.GST
    assert result.categories == [CategoryMapping("2025 Camp", "General")]


def test_donation_is_gst_exempt_where_configured():
    hero = load_variant_config("hero")
    result = aggregate_payables([row(1, "2025 Building Donation", "50", ledger="21200", category="Donations")], hero)
    payable = result.payables[0]
    assert payable.is_donation
    assert payable.gst_status is GstStatus.EXEMPT
    assert payable.ledger_code == "~LDC_21200"


def test_edge_donation_keeps_gst():
    edge = load_variant_config("edge")
    payable = aggregate_payables([row(1, "2025 Koha", "20")], edge).payables[0]
    assert payable.is_donation
    assert payable.gst_status is GstStatus.GST


def test_primary_gst_exempt_flag():
    kamar = load_variant_config("kamar")
    payable = aggregate_payables([row(1, "2025 Trip", "30", ledger="4200", gst_exempt=True)], kamar).payables[0]
    assert payable.gst_status is GstStatus.EXEMPT


class TestSecondarySource:
    def charges(self):
        return {
            ("Camp", "2025"): ChargeMetadata(
                title="Camp", year="2025", payable_name="2025 Camp",
                account="4100/1", department="Outdoor Ed", gst_amount="13.04", total=Decimal("100"),
            ),
            ("Swimming", "2025"): ChargeMetadata(
                title="Swimming", year="2025", payable_name="2025 Swimming",
                account="4300", department="Sport", gst_amount="", total=Decimal("1"),
                total_is_placeholder=True, donation_present=True,
            ),
        }

    def test_charges_take_precedence_and_come_first(self):
        kamar = load_variant_config("kamar")
        records = [
            row(1, "2025 Trip", "30", ledger="4200", category="Social Sciences", title="Trip"),
            row(2, "2025 Camp", "80", ledger="9999", category="Other", title="Camp"),
        ]
        result = aggregate_payables(records, kamar, self.charges())

        assert [p.name for p in result.payables] == ["2025 Camp", "2025 Swimming", "2025 Trip"]
        camp, swimming, trip = result.payables
        assert camp.price == Decimal("100")
        assert camp.ledger_code == "~LDC_4100"
        assert camp.gst_status is GstStatus.GST
        assert swimming.is_donation
        assert swimming.gst_status is GstStatus.EXEMPT
        assert trip.ledger_code == "~LDC_4200"
        assert trip.price == Decimal("30")

        assert result.sources == {
            "from_secondary": 2,
            "primary_only": 1,
            "secondary_only": 1,
            "total_unique": 3,
        }

    def test_categories_prefer_charge_department(self):
        kamar = load_variant_config("kamar")
        records = [
            row(1, "2025 Trip", "30", category="Social Sciences", title="Trip"),
            row(2, "2025 Camp", "80", category="Other", title="Camp"),
            row(3, "2025 Camp", "80", category="Other", title="Camp"),
        ]
        result = aggregate_payables(records, kamar, self.charges())
        assert result.categories == [
            CategoryMapping("2025 Trip", "Social Sciences"),
            CategoryMapping("2025 Camp", "Outdoor Ed"),
            CategoryMapping("2025 Swimming", "Sport"),
        ]
