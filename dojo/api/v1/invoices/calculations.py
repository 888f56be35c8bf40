"""
Invoice arithmetic on Money. Per line item:

    subtotal   = quantity x unit_price
    discount   = subtotal x discount_rate / 100
    tax        = sum of the line's tax amounts (each rate applied to subtotal - discount)
    line_total = subtotal - discount + tax

Invoice totals are the sums over line items. Existing invoices are totalled from their
stored tax snapshots, never from the live tax rates.
"""

import logging
from decimal import Decimal
from typing import Iterable, List, NamedTuple, Optional, Sequence
from uuid import UUID

from dojo.api.v1.tax_rates.service import parse_rate
from dojo.core.models import InvoiceLineItem, InvoiceLineItemTax, TaxRate
from dojo.core.money import (
    Money,
    add_money,
    from_cents,
    multiply_money,
    percentage_of,
    subtract_money,
    sum_money,
    zero_money,
)

logger = logging.getLogger(__name__)


class LineItemTotals(NamedTuple):
    subtotal: Money
    discount_amount: Money
    tax_amount: Money
    line_total: Money


class LineItemTaxAmount(NamedTuple):
    tax_rate: TaxRate
    rate: Decimal
    tax_amount: Money


class InvoiceTotals(NamedTuple):
    subtotal: Money
    discount_amount: Money
    tax_amount: Money
    total_amount: Money


def calculate_line_item_subtotal(quantity: int, unit_price: Money) -> Money:
    return multiply_money(unit_price, quantity)


def calculate_line_item_discount(subtotal: Money, discount_rate) -> Money:
    if not discount_rate:
        return zero_money(subtotal.currency)
    return percentage_of(subtotal, discount_rate)


def calculate_line_item_totals(
    quantity: int,
    unit_price: Money,
    discount_rate=0,
    tax_amounts: Iterable[Money] = (),
) -> LineItemTotals:
    """Totals for a line whose tax amounts are already known (e.g. stored snapshots)."""
    subtotal = calculate_line_item_subtotal(quantity, unit_price)
    discount = calculate_line_item_discount(subtotal, discount_rate)
    tax = sum_money(tax_amounts, subtotal.currency)
    return LineItemTotals(subtotal, discount, tax, add_money(subtract_money(subtotal, discount), tax))


def calculate_line_item_tax_with_rates(
    taxable_amount: Money,
    tax_rate_ids: Sequence[UUID],
    tax_rates: Sequence[TaxRate],
) -> List[LineItemTaxAmount]:
    """Per-rate tax on the taxable amount for the selected rate ids. Unknown ids and unusable rates are skipped."""
    rates_by_id = {r.id: r for r in tax_rates}
    out = []
    for tax_rate_id in tax_rate_ids:
        tax_rate = rates_by_id.get(tax_rate_id)
        if tax_rate is None:
            logger.warning("Tax rate %s not found among active rates; skipping", tax_rate_id)
            continue
        rate = parse_rate(tax_rate)
        if rate is None:
            logger.error("Invalid tax rate found for %s: %r; skipping", tax_rate.name, tax_rate.rate)
            continue
        out.append(LineItemTaxAmount(tax_rate, rate, multiply_money(taxable_amount, rate)))
    return out


def calculate_line_item_totals_with_rates(
    quantity: int,
    unit_price: Money,
    tax_rate_ids: Sequence[UUID] = (),
    tax_rates: Sequence[TaxRate] = (),
    discount_rate=0,
) -> LineItemTotals:
    subtotal = calculate_line_item_subtotal(quantity, unit_price)
    discount = calculate_line_item_discount(subtotal, discount_rate)
    taxes = calculate_line_item_tax_with_rates(subtract_money(subtotal, discount), tax_rate_ids, tax_rates)
    tax = sum_money((t.tax_amount for t in taxes), subtotal.currency)
    return LineItemTotals(subtotal, discount, tax, add_money(subtract_money(subtotal, discount), tax))


def build_line_item_taxes(taxes: Iterable[LineItemTaxAmount]) -> List[InvoiceLineItemTax]:
    """Snapshot rows (name, rate, description) frozen at creation time."""
    return [
        InvoiceLineItemTax(
            tax_rate_id=t.tax_rate.id,
            tax_name_snapshot=t.tax_rate.name,
            tax_rate_snapshot=t.rate,
            tax_description_snapshot=t.tax_rate.description,
            tax_amount_cents=t.tax_amount.cents,
        )
        for t in taxes
    ]


def line_item_totals_from_snapshot(item: InvoiceLineItem, currency: Optional[str] = None) -> LineItemTotals:
    return calculate_line_item_totals(
        item.quantity,
        from_cents(item.unit_price_cents, currency),
        item.discount_rate or 0,
        [from_cents(t.tax_amount_cents, currency) for t in item.taxes],
    )


def calculate_invoice_totals(line_items: Iterable[LineItemTotals], currency: Optional[str] = None) -> InvoiceTotals:
    subtotal = discount = tax = zero_money(currency)
    for item in line_items:
        subtotal = add_money(subtotal, item.subtotal)
        discount = add_money(discount, item.discount_amount)
        tax = add_money(tax, item.tax_amount)
    return InvoiceTotals(subtotal, discount, tax, add_money(subtract_money(subtotal, discount), tax))
