"""HTTP API for payment initiation, callbacks and ledger queries."""
