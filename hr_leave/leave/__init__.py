"""Leave module — balance ledger, accrual and year-end sweeps, request workflow."""
