"""Leave ledger domain: entitlements, accrual, carry-forward, suspensions, patterns."""
