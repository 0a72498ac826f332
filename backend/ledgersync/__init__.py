"""
Cafe ledger sync: business-day shift aggregation and QuickBooks auto-send
"""
