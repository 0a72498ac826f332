"""
Revenue reconciliation

iCafeCloud does not report cash expenses directly. They fall out of the cash
flow identity:

    cash = sales + topups + expense - refunds
    expense = cash - sales - topups + refunds

A negative residual is clamped to zero.
"""
from decimal import Decimal
import logging

from ledgersync.schemas.report import ZERO, ReconciledTotals, ReportTotals

logger = logging.getLogger(__name__)


def combined_refund_total(report: ReportTotals) -> Decimal:
    """Top-up refunds plus sale refunds, taken from the "total" buckets only"""
    return report.refund.topup.total.amount + report.refund.sale.total.amount


def combined_refund_count(report: ReportTotals) -> Decimal:
    return report.refund.topup.total.number + report.refund.sale.total.number


def expense(cash: Decimal, sales: Decimal, topups: Decimal, refund_total: Decimal) -> Decimal:
    """
    Derive expenses from the cash flow identity, never below zero

    Args:
        cash: Net cash for the period
        sales: Total sales
        topups: Total top-ups
        refund_total: Combined refunds

    Returns:
        Expense amount (>= 0)
    """
    residual = cash - sales - topups + refund_total
    if residual < ZERO:
        logger.debug(
            "Negative expense residual %s clamped to 0 (cash=%s sales=%s topups=%s refunds=%s)",
            residual, cash, sales, topups, refund_total,
        )
        return ZERO
    return residual


def reconcile(report: ReportTotals) -> ReconciledTotals:
    """Headline totals for a shift report or an aggregated report"""
    sales = report.sale.total
    topups = report.topup.amount
    refund_total = combined_refund_total(report)

    return ReconciledTotals(
        cash=report.cash,
        sales=sales,
        topups=topups,
        refund_total=refund_total,
        refund_count=combined_refund_count(report),
        expense=expense(report.cash, sales, topups, refund_total),
        profit=report.profit,
        revenue=sales + topups,
    )
