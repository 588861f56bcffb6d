"""Leave Ledger — entitlement ledger and leave pattern analysis."""

__version__ = "1.0.0"
