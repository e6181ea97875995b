"""Leave balance ledger and request approval workflow service."""
