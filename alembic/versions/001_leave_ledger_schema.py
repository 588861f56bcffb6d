"""001 – Leave ledger schema: types, entitlements, adjustments, suspensions,
requests, audit trail.

Revision ID: 001_leave_ledger_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_leave_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    (
        "leave_status",
        ["pending", "approved", "rejected", "returned_for_correction", "cancelled"],
    ),
    ("adjustment_type", ["add", "deduct"]),
    (
        "adjustment_source",
        [
            "manual",
            "accrual",
            "suspension",
            "carry_forward",
            "carry_forward_override",
            "expiry",
            "finalization",
            "recalculation",
            "assignment",
        ],
    ),
    ("suspension_type", ["unpaid", "long_absence"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. leave_types ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id                     UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            code                   VARCHAR(20)  NOT NULL UNIQUE,
            name                   VARCHAR(100) NOT NULL,
            description            TEXT,
            default_entitlement    NUMERIC(10,4),
            is_paid                BOOLEAN DEFAULT TRUE,
            allow_negative_balance BOOLEAN DEFAULT FALSE,
            is_active              BOOLEAN DEFAULT TRUE,
            created_at             TIMESTAMPTZ DEFAULT NOW(),
            updated_at             TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. leave_entitlements ─────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_entitlements (
            id                            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id                   UUID NOT NULL,
            leave_type_id                 UUID NOT NULL REFERENCES leave_types(id),
            yearly_entitlement            NUMERIC(10,4) DEFAULT 0,
            accrued                       NUMERIC(10,4) DEFAULT 0,
            carry_forward                 NUMERIC(10,4) DEFAULT 0,
            carry_forward_expiry          DATE,
            carry_forward_processed_at    DATE,
            carry_forward_override_reason TEXT,
            taken                         NUMERIC(10,4) DEFAULT 0,
            pending                       NUMERIC(10,4) DEFAULT 0,
            period_start                  DATE,
            last_accrual_date             DATE,
            version                       INTEGER NOT NULL DEFAULT 1,
            created_at                    TIMESTAMPTZ DEFAULT NOW(),
            updated_at                    TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_entitlement UNIQUE (employee_id, leave_type_id)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_entitlements_employee_id ON leave_entitlements(employee_id)"
    )

    # ── 3. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id       UUID NOT NULL,
            employee_name     VARCHAR(200),
            leave_type_id     UUID NOT NULL REFERENCES leave_types(id),
            start_date        DATE NOT NULL,
            end_date          DATE NOT NULL,
            duration_days     NUMERIC(10,4) NOT NULL,
            reason            TEXT,
            status            leave_status DEFAULT 'pending',
            finalized_by      UUID,
            finalized_at      TIMESTAMPTZ,
            reviewer_remarks  TEXT,
            is_override       BOOLEAN DEFAULT FALSE,
            override_reason   TEXT,
            flagged_irregular BOOLEAN DEFAULT FALSE,
            irregular_reason  TEXT,
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW(),
            CHECK (end_date >= start_date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_requests_employee_id ON leave_requests(employee_id)"
    )
    op.execute("CREATE INDEX idx_leave_req_status ON leave_requests(status)")

    # ── 4. leave_adjustments (append-only) ────────────────────────────────
    op.execute("""
        CREATE TABLE leave_adjustments (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            entitlement_id   UUID NOT NULL REFERENCES leave_entitlements(id),
            employee_id      UUID NOT NULL,
            leave_type_id    UUID NOT NULL REFERENCES leave_types(id),
            adjustment_type  adjustment_type NOT NULL,
            source           adjustment_source NOT NULL,
            amount           NUMERIC(10,4) NOT NULL,
            reason           TEXT NOT NULL,
            actor_id         UUID,
            leave_request_id UUID REFERENCES leave_requests(id),
            created_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_adjustments_emp_type
            ON leave_adjustments(employee_id, leave_type_id)
    """)

    # ── 5. accrual_suspensions ────────────────────────────────────────────
    op.execute("""
        CREATE TABLE accrual_suspensions (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id     UUID NOT NULL,
            leave_type_id   UUID REFERENCES leave_types(id),
            suspension_type suspension_type NOT NULL,
            from_date       DATE NOT NULL,
            to_date         DATE NOT NULL,
            reason          TEXT NOT NULL,
            adjustment_days NUMERIC(10,4) DEFAULT 0,
            actor_id        UUID,
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            CHECK (to_date >= from_date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_accrual_suspensions_employee_id ON accrual_suspensions(employee_id)"
    )

    # ── 6. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id    UUID,
            action      VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id   UUID NOT NULL,
            old_values  JSONB,
            new_values  JSONB,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id   ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity     ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")
    op.execute("CREATE INDEX ix_audit_trail_action     ON audit_trail(action)")

    # ── Seed: default leave types ─────────────────────────────────────────
    op.execute("""
        INSERT INTO leave_types (code, name, is_paid, allow_negative_balance) VALUES
            ('annual',    'Annual Leave',    TRUE,  FALSE),
            ('sick',      'Sick Leave',      TRUE,  FALSE),
            ('personal',  'Personal Leave',  TRUE,  FALSE),
            ('paternity', 'Paternity Leave', TRUE,  FALSE),
            ('maternity', 'Maternity Leave', TRUE,  FALSE),
            ('unpaid',    'Unpaid Leave',    FALSE, TRUE)
    """)


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "accrual_suspensions",
        "leave_adjustments",
        "leave_requests",
        "leave_entitlements",
        "leave_types",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
