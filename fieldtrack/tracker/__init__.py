"""Achievement ledger, attendance and evidence handling."""
