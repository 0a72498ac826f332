"""
Report Schemas

Internal, fully-typed shapes for shift and business-day reports. All money and
counts are Decimal with a default of zero so merge code never has to deal with
missing or stringly-typed values; the conversion from iCafeCloud JSON lives in
services/report_adapter.py.
"""
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, Field

from ledgersync.schemas.cafe import CafeCredentials
from ledgersync.utils.business_day import ShiftType

ZERO = Decimal("0")


class CountTotal(BaseModel):
    """A sales bucket: transaction count and total"""
    number: Decimal = ZERO
    total: Decimal = ZERO


class CountAmount(BaseModel):
    """A top-up / refund bucket: transaction count and amount"""
    number: Decimal = ZERO
    amount: Decimal = ZERO


class SaleSummary(BaseModel):
    """Sales by payment method"""
    total: Decimal = ZERO
    product: CountTotal = Field(default_factory=CountTotal)
    cash: CountTotal = Field(default_factory=CountTotal)
    by_balance: CountTotal = Field(default_factory=CountTotal)
    credit_card: CountTotal = Field(default_factory=CountTotal)
    offer_member: CountTotal = Field(default_factory=CountTotal)
    coin: CountTotal = Field(default_factory=CountTotal)


class TopupSummary(BaseModel):
    """Top-ups by method"""
    amount: Decimal = ZERO
    number: Decimal = ZERO
    member: CountAmount = Field(default_factory=CountAmount)
    cash: CountAmount = Field(default_factory=CountAmount)
    credit_card: CountAmount = Field(default_factory=CountAmount)
    qr: CountAmount = Field(default_factory=CountAmount)


class TopupRefundSummary(BaseModel):
    """Top-up refunds. `total` already includes every sub-method."""
    total: CountAmount = Field(default_factory=CountAmount)
    member: CountAmount = Field(default_factory=CountAmount)
    cash: CountAmount = Field(default_factory=CountAmount)
    credit_card: CountAmount = Field(default_factory=CountAmount)
    prepaid: CountAmount = Field(default_factory=CountAmount)
    bonus: CountAmount = Field(default_factory=CountAmount)


class SaleRefundSummary(BaseModel):
    """Product sale refunds"""
    total: CountAmount = Field(default_factory=CountAmount)


class RefundSummary(BaseModel):
    """Refunds by category"""
    topup: TopupRefundSummary = Field(default_factory=TopupRefundSummary)
    sale: SaleRefundSummary = Field(default_factory=SaleRefundSummary)


class TopMember(BaseModel):
    member: str
    amount: Decimal = ZERO


class TopPC(BaseModel):
    pc_name: str
    total_spend: Decimal = ZERO


class ProductSale(BaseModel):
    """A product line item: quantity sold, revenue, quantity refunded"""
    product_name: str
    order_number: Decimal = ZERO
    order_total: Decimal = ZERO
    order_refunded: Decimal = ZERO


class ExpenseItem(BaseModel):
    """A cash expense logged by staff during a shift"""
    amount: Decimal = ZERO
    details: str = ""
    staff: str = "Unknown"
    shift_id: Optional[str] = None


class Shift(BaseModel):
    """One staff member's login-to-logout period, as listed by the source"""
    shift_id: Optional[str] = None
    staff_name: str
    start: datetime
    end: Optional[datetime] = None  # None while the shift is still open
    shift_type: ShiftType
    type_hint: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.end is None


class ShiftDetail(BaseModel):
    """Per-shift detail: staff-logged expenses and shop sales"""
    expense_total: Decimal = ZERO
    expense_items: List[ExpenseItem] = Field(default_factory=list)
    products: List[ProductSale] = Field(default_factory=list)


class ReportTotals(BaseModel):
    """Scalar and list fields shared by per-shift and merged reports"""
    cash: Decimal = ZERO
    profit: Decimal = ZERO
    sale: SaleSummary = Field(default_factory=SaleSummary)
    topup: TopupSummary = Field(default_factory=TopupSummary)
    refund: RefundSummary = Field(default_factory=RefundSummary)
    top_members: List[TopMember] = Field(default_factory=list)
    top_pcs: List[TopPC] = Field(default_factory=list)
    products: List[ProductSale] = Field(default_factory=list)


class ShiftReport(ReportTotals):
    """reportData for exactly one shift (staff name + the shift's own time range)"""
    pass


class ShiftSummary(BaseModel):
    """Per-shift breakdown row of a business-day report"""
    shift_id: Optional[str] = None
    staff_name: str
    shift_type: ShiftType
    start: datetime
    end: Optional[datetime] = None
    cash: Decimal = ZERO
    sales: Decimal = ZERO
    topups: Decimal = ZERO
    topup_count: Decimal = ZERO
    refunds: Decimal = ZERO
    profit: Decimal = ZERO
    expense: Decimal = ZERO
    average_topup: Decimal = ZERO
    hours: float = 0.0
    report_failed: bool = False
    error: Optional[str] = None


class StaffTopup(BaseModel):
    name: str
    total: Decimal = ZERO
    count: Decimal = ZERO


class AggregatedReport(ReportTotals):
    """
    Shift-aggregated report for a business day or an explicit range.

    A day with no shifts is represented by an all-zero instance with the same
    shape, never by None.
    """
    business_date: Optional[date] = None
    date_start: Optional[str] = None
    date_end: Optional[str] = None
    time_start: Optional[str] = None
    time_end: Optional[str] = None
    expense_items: List[ExpenseItem] = Field(default_factory=list)
    shift_expense_total: Decimal = ZERO
    shifts: List[ShiftSummary] = Field(default_factory=list)
    topups_by_staff: List[StaffTopup] = Field(default_factory=list)
    shift_count: int = 0
    failed_shift_count: int = 0


class ReconciledTotals(BaseModel):
    """Headline figures derived from an aggregated report"""
    cash: Decimal = ZERO
    sales: Decimal = ZERO
    topups: Decimal = ZERO
    refund_total: Decimal = ZERO
    refund_count: Decimal = ZERO
    expense: Decimal = ZERO
    profit: Decimal = ZERO
    revenue: Decimal = ZERO  # sales + topups


class DailyReport(BaseModel):
    """Everything the ledger sync needs for one (location, business date)"""
    location: CafeCredentials
    business_date: date
    report: AggregatedReport
    totals: ReconciledTotals
