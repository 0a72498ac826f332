"""
Adapter from iCafeCloud JSON to the internal report schemas.

The upstream payloads are loosely typed: numbers arrive as ints, floats,
numeric strings, empty strings or not at all, and nested objects may be
missing. Everything is normalised here so the aggregation code only ever sees
Decimals and fully-populated models.
"""
from typing import Any, Dict, Iterable, List, Optional
from decimal import Decimal, InvalidOperation

from ledgersync.exceptions import InternalInvariantViolation
from ledgersync.schemas.report import (
    ZERO,
    CountAmount,
    CountTotal,
    ExpenseItem,
    ProductSale,
    RefundSummary,
    SaleRefundSummary,
    SaleSummary,
    Shift,
    ShiftDetail,
    ShiftReport,
    TopMember,
    TopPC,
    TopupRefundSummary,
    TopupSummary,
)
from ledgersync.utils.business_day import classify_shift, parse_local_timestamp

ALL_SHIFTS_ROW = "All Shifts"


def to_decimal(value: Any) -> Decimal:
    """Coerce an upstream value to Decimal; anything non-numeric becomes 0"""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip().replace(",", ""))
        except InvalidOperation:
            return ZERO
    else:
        return ZERO
    return result if result.is_finite() else ZERO


def _dig(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _list(value: Any) -> List[Dict[str, Any]]:
    if isinstance(value, dict):
        value = list(value.values())
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _count_total(data: Any) -> CountTotal:
    return CountTotal(number=to_decimal(_dig(data, "number")), total=to_decimal(_dig(data, "total")))


def _count_amount(data: Any) -> CountAmount:
    return CountAmount(number=to_decimal(_dig(data, "number")), amount=to_decimal(_dig(data, "amount")))


def parse_shift(row: Dict[str, Any], utc_offset_hours: int) -> Optional[Shift]:
    """
    Convert a shiftList row into a Shift.

    Returns None for the "All Shifts" pseudo-row.

    Raises:
        InternalInvariantViolation: the row has no staff name or no usable start time
    """
    staff_name = str(row.get("shift_staff_name") or row.get("log_staff_name") or "").strip()
    if staff_name == ALL_SHIFTS_ROW:
        return None
    if not staff_name:
        raise InternalInvariantViolation(f"Shift {row.get('shift_id')} has no staff name")

    raw_start = row.get("shift_start_time") or row.get("log_start_time")
    raw_end = row.get("shift_end_time", row.get("log_end_time"))
    try:
        start = parse_local_timestamp(raw_start, utc_offset_hours)
        end = parse_local_timestamp(raw_end, utc_offset_hours)
    except (TypeError, ValueError) as e:
        raise InternalInvariantViolation(
            f"Shift {row.get('shift_id')} ({staff_name}) has an unparseable time: {e}"
        ) from e
    if start is None:
        raise InternalInvariantViolation(f"Shift {row.get('shift_id')} ({staff_name}) has no start time")

    shift_id = row.get("shift_id")
    return Shift(
        shift_id=str(shift_id) if shift_id is not None else None,
        staff_name=staff_name,
        start=start,
        end=end,
        shift_type=classify_shift(start.hour),
        type_hint=row.get("log_type") or row.get("shift_type"),
    )


def parse_report(data: Optional[Dict[str, Any]]) -> ShiftReport:
    """Convert a reportData payload into a ShiftReport (missing parts are zero)"""
    data = data if isinstance(data, dict) else {}

    sale = data.get("sale")
    topup = data.get("topup")
    refund = data.get("refund")

    sale_refund = _dig(refund, "sale")
    if sale_refund is None and isinstance(_dig(refund, "product"), dict):
        product_refund = refund["product"]
        sale_refund = {
            "total": {
                "amount": product_refund.get("amount", product_refund.get("total")),
                "number": product_refund.get("number", product_refund.get("count")),
            }
        }

    return ShiftReport(
        cash=to_decimal(_dig(data, "report", "cash")),
        profit=to_decimal(_dig(data, "report", "profit")),
        sale=SaleSummary(
            total=to_decimal(_dig(sale, "total")),
            product=_count_total(_dig(sale, "product")),
            cash=_count_total(_dig(sale, "cash")),
            by_balance=_count_total(_dig(sale, "by_balance")),
            credit_card=_count_total(_dig(sale, "credit_card")),
            offer_member=_count_total(_dig(sale, "offer_member")),
            coin=_count_total(_dig(sale, "coin")),
        ),
        topup=TopupSummary(
            amount=to_decimal(_dig(topup, "amount")),
            number=to_decimal(_dig(topup, "number")),
            member=_count_amount(_dig(topup, "member")),
            cash=_count_amount(_dig(topup, "cash")),
            credit_card=_count_amount(_dig(topup, "credit_card")),
            qr=_count_amount(_dig(topup, "qr")),
        ),
        refund=RefundSummary(
            topup=TopupRefundSummary(
                total=_count_amount(_dig(refund, "topup", "total")),
                member=_count_amount(_dig(refund, "topup", "member")),
                cash=_count_amount(_dig(refund, "topup", "cash")),
                credit_card=_count_amount(_dig(refund, "topup", "credit_card")),
                prepaid=_count_amount(_dig(refund, "topup", "prepaid")),
                bonus=_count_amount(_dig(refund, "topup", "bonus")),
            ),
            sale=SaleRefundSummary(total=_count_amount(_dig(sale_refund, "total"))),
        ),
        top_members=[
            TopMember(member=str(m.get("member") or "unknown"), amount=to_decimal(m.get("amount")))
            for m in _list(data.get("top_five_members_topup"))
        ],
        top_pcs=[
            TopPC(pc_name=str(pc.get("pc_name") or "unknown"), total_spend=to_decimal(pc.get("total_spend")))
            for pc in _list(data.get("top_five_pc_spend"))
        ],
        products=list(_parse_products(_list(data.get("product_sales_items")))),
    )


def _parse_products(items: Iterable[Dict[str, Any]]) -> Iterable[ProductSale]:
    for item in items:
        yield ProductSale(
            product_name=str(item.get("product_name") or item.get("name") or "unknown"),
            order_number=to_decimal(item.get("order_number")),
            order_total=to_decimal(item.get("order_total")),
            order_refunded=to_decimal(item.get("order_refunded")),
        )


def parse_shift_detail(data: Optional[Dict[str, Any]], shift: Shift) -> ShiftDetail:
    """Convert a shiftDetail payload into the shift's expenses and shop sales"""
    data = data if isinstance(data, dict) else {}
    return ShiftDetail(
        expense_total=abs(to_decimal(data.get("center_expenses"))),
        expense_items=[
            ExpenseItem(
                amount=abs(to_decimal(item.get("log_money"))),
                details=str(item.get("log_details") or ""),
                staff=shift.staff_name,
                shift_id=shift.shift_id,
            )
            for item in _list(data.get("center_expenses_items"))
        ],
        products=[
            ProductSale(
                product_name=str(item.get("product_name") or "unknown"),
                order_number=to_decimal(item.get("sold")),
                order_total=to_decimal(item.get("cash")),
            )
            for item in _list(data.get("shop_sales"))
        ],
    )
