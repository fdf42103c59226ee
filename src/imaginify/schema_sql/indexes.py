"""All CREATE INDEX statements for the initial schema."""

ALL = [
    # transactions
    "CREATE INDEX idx_transactions_buyer ON transactions(buyer_id, created_at);",
]
