"""CREATE TABLE statements for users, purchase transactions, and credit grants."""

USERS = """
CREATE TABLE users (
    user_id         UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    clerk_id        VARCHAR(255) NOT NULL
                    CONSTRAINT uq_users_clerk_id UNIQUE,
    email           VARCHAR(320) NOT NULL
                    CONSTRAINT uq_users_email UNIQUE,
    username        VARCHAR(64)  NOT NULL
                    CONSTRAINT uq_users_username UNIQUE,
    first_name      VARCHAR(255),
    last_name       VARCHAR(255),
    photo           VARCHAR(2048),
    plan_id         INTEGER NOT NULL DEFAULT 1,
    credit_balance  INTEGER NOT NULL DEFAULT 10,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

# buyer_id has no foreign key: purchase history outlives users.
TRANSACTIONS = """
CREATE TABLE transactions (
    transaction_id  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    payment_id      VARCHAR(255) NOT NULL
                    CONSTRAINT uq_transactions_payment_id UNIQUE,
    amount          INTEGER NOT NULL,
    credits         INTEGER NOT NULL,
    plan            VARCHAR(64) NOT NULL,
    buyer_id        UUID NOT NULL,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT ck_transactions_amount_nonneg CHECK (amount >= 0),
    CONSTRAINT ck_transactions_credits_positive CHECK (credits > 0)
);
"""

CREDIT_GRANTS = """
CREATE TABLE credit_grants (
    payment_id  VARCHAR(255) PRIMARY KEY
                REFERENCES transactions(payment_id),
    user_id     UUID NOT NULL,
    credits     INTEGER NOT NULL,
    granted_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

ALL = [
    USERS,
    TRANSACTIONS,
    CREDIT_GRANTS,
]
