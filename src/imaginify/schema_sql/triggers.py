"""Trigger functions and trigger DDL for the initial schema."""

# ---- Trigger functions ----

FN_RAISE_IMMUTABLE = """
CREATE OR REPLACE FUNCTION raise_immutable_error()
RETURNS TRIGGER AS $$
BEGIN
    RAISE EXCEPTION 'Rows in table % are immutable', TG_TABLE_NAME;
END;
$$ LANGUAGE plpgsql;
"""

FUNCTIONS_ALL = [
    FN_RAISE_IMMUTABLE,
]

# ---- Triggers ----

TRIGGERS_ALL = [
    "CREATE TRIGGER trg_transactions_immutable "
    "BEFORE UPDATE OR DELETE ON transactions "
    "FOR EACH ROW EXECUTE FUNCTION raise_immutable_error();",

    "CREATE TRIGGER trg_credit_grants_immutable "
    "BEFORE UPDATE OR DELETE ON credit_grants "
    "FOR EACH ROW EXECUTE FUNCTION raise_immutable_error();",
]
