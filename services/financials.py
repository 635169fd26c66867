"""
Money arithmetic for estimations and quotations.

Pure functions over plain dicts. All amounts are Decimals rounded half-up
to cents, so recomputing from unchanged inputs gives identical results.
Item totals are always derived here; totals supplied by callers are
discarded.
"""
from contextlib import contextmanager
from decimal import Decimal, DecimalException, InvalidOperation, ROUND_HALF_UP
from itertools import chain
from typing import Any, Dict, Iterable, List, Optional

from services.exceptions import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        # str() keeps floats at their shortest repr instead of the binary expansion
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def non_negative(value: Any, field: str) -> Decimal:
    result = to_decimal(value, field)
    if result < ZERO:
        raise ValidationError(f"{field} cannot be negative")
    return result


@contextmanager
def within_range(field: str):
    """Report amounts the decimal context cannot hold at cent precision as ValidationError."""
    try:
        yield
    except DecimalException:
        raise ValidationError(f"{field} is too large")


def money(value: Any, field: str = "amount") -> Decimal:
    value = to_decimal(value, field)
    with within_range(field):
        return value.quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(quantity: Any, unit_price: Any) -> Decimal:
    quantity, unit_price = non_negative(quantity, "quantity"), non_negative(unit_price, "unit price")
    with within_range("item total"):
        total = quantity * unit_price
    return money(total, "item total")


def price_items(
    items: Iterable[Dict[str, Any]],
    quantity_field: str = "quantity",
    price_field: str = "unit_price",
    total_field: str = "total",
) -> List[Dict[str, Any]]:
    """Return copies of ``items`` with normalized numbers and a freshly derived total."""
    priced = []
    for item in items:
        quantity = non_negative(item.get(quantity_field), quantity_field)
        price = non_negative(item.get(price_field), price_field)
        priced.append({
            **item,
            quantity_field: quantity,
            price_field: price,
            total_field: line_total(quantity, price),
        })
    return priced


def sum_totals(items: Iterable[Dict[str, Any]], total_field: str = "total") -> Decimal:
    with within_range("total"):
        total = sum((item[total_field] for item in items), ZERO)
    return money(total, "total")


def estimation_totals(
    materials: List[Dict[str, Any]],
    labour: List[Dict[str, Any]],
    terms: List[Dict[str, Any]],
    quotation_amount: Optional[Any] = None,
    commission_amount: Optional[Any] = None,
) -> Dict[str, Optional[Decimal]]:
    estimated_amount = sum_totals(chain(materials, labour, terms))
    profit = None
    if quotation_amount is not None:
        commission = money(non_negative(commission_amount, "commission amount"), "commission amount") if commission_amount is not None else ZERO
        profit = money(non_negative(quotation_amount, "quotation amount"), "quotation amount") - estimated_amount - commission
    return {"estimated_amount": estimated_amount, "profit": profit}


def price_estimation(doc: Dict[str, Any]) -> Dict[str, Any]:
    materials = price_items(doc.get("materials") or [])
    labour = price_items(doc.get("labour") or [], quantity_field="days", price_field="price")
    terms = price_items(doc.get("terms_and_conditions") or [])

    quotation_amount = doc.get("quotation_amount")
    commission_amount = doc.get("commission_amount")
    priced = {
        **doc,
        "materials": materials,
        "labour": labour,
        "terms_and_conditions": terms,
        "quotation_amount": money(non_negative(quotation_amount, "quotation amount"), "quotation amount") if quotation_amount is not None else None,
        "commission_amount": money(non_negative(commission_amount, "commission amount"), "commission amount") if commission_amount is not None else None,
    }
    priced.update(estimation_totals(materials, labour, terms, quotation_amount, commission_amount))
    return priced


def quotation_totals(items: List[Dict[str, Any]], vat_percentage: Any) -> Dict[str, Decimal]:
    vat_percentage = non_negative(vat_percentage, "VAT percentage")
    if vat_percentage > HUNDRED:
        raise ValidationError("VAT percentage cannot exceed 100")
    subtotal = sum_totals(items, "total_price")
    with within_range("VAT amount"):
        vat_amount = money(subtotal * vat_percentage / HUNDRED, "VAT amount")
    with within_range("total"):
        total = money(subtotal + vat_amount, "total")
    return {"subtotal": subtotal, "vat_amount": vat_amount, "total": total}


def price_quotation(doc: Dict[str, Any]) -> Dict[str, Any]:
    items = price_items(doc.get("items") or [], total_field="total_price")
    vat_percentage = to_decimal(doc.get("vat_percentage"), "VAT percentage")
    priced = {**doc, "items": items, "vat_percentage": vat_percentage}
    priced.update(quotation_totals(items, vat_percentage))
    return priced
