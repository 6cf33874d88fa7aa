"""
Tests for autoquote/auto/quote_assembly.py: totals, dual tax, amount in words.
"""
from datetime import date

import pytest

from autoquote.auto.quote_assembly import (
    assemble_quote, number_to_words, price_line, quote_id_from_request,
)
from autoquote.core.models import (
    Customer, ExtractedLineItem, MatchResult, Product, QuoteLineItem,
)


def _line(name, qty, price):
    return QuoteLineItem(product_name=name, quantity=qty, unit_price=price)


class TestNumberToWords:

    @pytest.mark.parametrize("amount,words", [
        (0, "Zero Rupees Only"),
        (7, "Seven Rupees Only"),
        (15, "Fifteen Rupees Only"),
        (40, "Forty Rupees Only"),
        (99, "Ninety Nine Rupees Only"),
        (105, "One Hundred Five Rupees Only"),
        (1180, "One Thousand One Hundred Eighty Rupees Only"),
        (125000, "One Lakh Twenty Five Thousand Rupees Only"),
        (10000000, "One Crore Rupees Only"),
        (123456789, "Twelve Crore Thirty Four Lakh Fifty Six Thousand "
                    "Seven Hundred Eighty Nine Rupees Only"),
    ])
    def test_indian_numbering(self, amount, words):
        assert number_to_words(amount) == words

    def test_rounds_half_up(self):
        assert number_to_words(10.5) == "Eleven Rupees Only"
        assert number_to_words(10.49) == "Ten Rupees Only"


class TestQuoteId:

    def test_first_eight_upper(self):
        assert quote_id_from_request("3f2a9c1be4d04f7a9e6b") == "3F2A9C1B"

    def test_hyphenated_uuid(self):
        assert quote_id_from_request("3f2a-9c1b-e4d0") == "3F2A9C1B"


class TestPriceLine:

    def test_uses_catalog_and_tier(self):
        product = Product(name="Steel Bolt M8", base_price=10.0, id=1, hsn_code="7318",
                          description="Zinc plated")
        line = price_line(ExtractedLineItem("steel bolt m8", 100), MatchResult(product, 1.0))
        assert line.product_name == "Steel Bolt M8"
        assert line.unit_price == 8.5
        assert line.total == 850.0
        assert line.hsn_code == "7318"
        assert line.specifications == "Zinc plated"

    def test_requested_specs_win(self):
        product = Product(name="Gloves", base_price=45.0, description="Catalog text")
        line = price_line(ExtractedLineItem("Gloves", 1, "Size L"), MatchResult(product, 1.0))
        assert line.specifications == "Size L"
        assert line.hsn_code == ""


class TestAssemble:

    def test_totals(self):
        quote = assemble_quote("ABCD1234", [_line("Bolt", 10, 10.0), _line("Gloves", 2, 45.0)],
                               customer_email="buyer@acme.example")
        assert quote.subtotal == 190.0
        assert quote.cgst == 17.1
        assert quote.sgst == 17.1
        assert quote.tax_total == 34.2
        assert quote.total == 224.2
        assert quote.amount_in_words == "Two Hundred Twenty Four Rupees Only"

    def test_unmatched_never_in_subtotal(self):
        quote = assemble_quote("Q1", [_line("Bolt", 1, 100.0)],
                               unmatched_items=[ExtractedLineItem("Mystery part", 500)])
        assert quote.subtotal == 100.0
        assert len(quote.unmatched_items) == 1

    def test_configurable_rates(self):
        quote = assemble_quote("Q1", [_line("Bolt", 1, 100.0)], cgst_rate=0.06, sgst_rate=0.06)
        assert quote.total == 112.0

    def test_dates(self):
        quote = assemble_quote("Q1", [], validity_days=30, today=date(2026, 10, 1))
        assert quote.date == date(2026, 10, 1)
        assert quote.valid_until == date(2026, 10, 31)

    def test_customer_details(self):
        customer = Customer(email="buyer@acme.example", name="Ravi Kumar",
                            company="Acme Industries", billing_address="12 MG Road",
                            gst_number="27AAACA1234A1Z1")
        quote = assemble_quote("Q1", [], customer=customer, customer_name="R. K.",
                               customer_email="buyer@acme.example")
        assert quote.customer_name == "Ravi Kumar"
        assert quote.company_name == "Acme Industries"
        assert quote.customer_gstin == "27AAACA1234A1Z1"
        assert quote.shipping_address == "12 MG Road"

    def test_name_falls_back_to_email(self):
        quote = assemble_quote("Q1", [], customer_email="someone@x.example")
        assert quote.customer_name == "someone@x.example"

    def test_to_dict(self):
        quote = assemble_quote("Q1", [_line("Bolt", 2, 5.0)], today=date(2026, 1, 2))
        d = quote.to_dict()
        assert d["matched_items"][0]["total"] == 10.0
        assert d["date"] == "2026-01-02"
