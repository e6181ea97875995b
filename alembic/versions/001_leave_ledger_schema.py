"""001 – Leave ledger schema: directory, calendar, ledger, workflow, inbox.

Revision ID: 001_leave_ledger_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+05:30
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
    ("employment_status", ["active", "probation", "notice_period", "relieved"]),
    ("employment_type", ["full_time", "part_time", "contract", "intern"]),
    ("gender_type", ["male", "female", "other", "undisclosed"]),
    ("user_role", ["employee", "manager", "hr_admin", "system_admin"]),
    (
        "notification_type",
        ["info", "action_required", "approval", "reminder", "alert"],
    ),
    (
        "leave_request_status",
        [
            "submitted",
            "manager_approved",
            "manager_rejected",
            "returned_for_correction",
            "hr_approved",
            "hr_rejected",
            "cancelled",
        ],
    ),
    ("accrual_method", ["monthly", "yearly"]),
    ("rounding_rule", ["round", "floor", "ceil"]),
    ("rounding_scope", ["per_period", "cumulative"]),
    (
        "adjustment_type",
        ["accrual", "carry_forward", "manual", "consumption", "reversal"],
    ),
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
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. employees (read-only directory) ───────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_code        VARCHAR(20)  NOT NULL UNIQUE,
            first_name           VARCHAR(100) NOT NULL,
            last_name            VARCHAR(100) NOT NULL,
            display_name         VARCHAR(255),
            email                VARCHAR(255) NOT NULL UNIQUE,
            gender               gender_type,
            reporting_manager_id UUID REFERENCES employees(id),
            l2_manager_id        UUID REFERENCES employees(id),
            employment_status    employment_status DEFAULT 'active',
            employment_type      employment_type DEFAULT 'full_time',
            date_of_joining      DATE NOT NULL,
            is_active            BOOLEAN DEFAULT TRUE,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_employees_manager ON employees(reporting_manager_id)")

    # ── 2. role_assignments ──────────────────────────────────────────────
    op.execute("""
        CREATE TABLE role_assignments (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            role        user_role NOT NULL,
            assigned_by UUID REFERENCES employees(id),
            assigned_at TIMESTAMPTZ DEFAULT NOW(),
            revoked_at  TIMESTAMPTZ,
            is_active   BOOLEAN DEFAULT TRUE
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_role_active
            ON role_assignments(employee_id, role)
            WHERE is_active = TRUE
    """)

    # ── 3. leave calendar ────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_calendars (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            year            INTEGER NOT NULL UNIQUE,
            name            VARCHAR(100),
            weekly_off_days JSONB DEFAULT '[]'::jsonb,
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            updated_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE calendar_holidays (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            calendar_id  UUID NOT NULL REFERENCES leave_calendars(id) ON DELETE CASCADE,
            holiday_date DATE NOT NULL,
            reason       VARCHAR(150) NOT NULL,
            created_at   TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_calendar_holiday_date UNIQUE (calendar_id, holiday_date)
        )
    """)
    op.execute("CREATE INDEX idx_calendar_holidays_date ON calendar_holidays(holiday_date)")
    op.execute("""
        CREATE TABLE blocked_periods (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            calendar_id UUID NOT NULL REFERENCES leave_calendars(id) ON DELETE CASCADE,
            from_date   DATE NOT NULL,
            to_date     DATE NOT NULL,
            reason      VARCHAR(255) NOT NULL,
            created_at  TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_blocked_period_range CHECK (from_date <= to_date)
        )
    """)

    # ── 4. leave types & policies ────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id                             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            code                           VARCHAR(10)  NOT NULL UNIQUE,
            name                           VARCHAR(100) NOT NULL,
            description                    TEXT,
            category                       VARCHAR(50),
            is_paid                        BOOLEAN DEFAULT TRUE,
            is_deductible                  BOOLEAN DEFAULT TRUE,
            requires_attachment            BOOLEAN DEFAULT FALSE,
            attachment_type                VARCHAR(50),
            attachment_required_after_days NUMERIC(8,2),
            min_tenure_months              INTEGER DEFAULT 0,
            max_duration_days              NUMERIC(8,2),
            eligible_employment_types      JSONB DEFAULT '[]'::jsonb,
            eligible_employment_statuses   JSONB DEFAULT '[]'::jsonb,
            applicable_gender              gender_type,
            is_active                      BOOLEAN DEFAULT TRUE,
            created_at                     TIMESTAMPTZ DEFAULT NOW(),
            updated_at                     TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE leave_policies (
            id                             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_type_id                  UUID NOT NULL UNIQUE
                                               REFERENCES leave_types(id) ON DELETE CASCADE,
            accrual_method                 accrual_method DEFAULT 'monthly',
            monthly_rate                   NUMERIC(8,4),
            yearly_rate                    NUMERIC(8,4),
            rounding_rule                  rounding_rule DEFAULT 'round',
            rounding_scope                 rounding_scope DEFAULT 'per_period',
            carry_forward_allowed          BOOLEAN DEFAULT FALSE,
            max_carry_forward              NUMERIC(8,2),
            carry_forward_expiry_months    INTEGER,
            min_notice_days                INTEGER DEFAULT 0,
            max_consecutive_days           INTEGER,
            allow_blocked_period_exception BOOLEAN DEFAULT FALSE,
            created_at                     TIMESTAMPTZ DEFAULT NOW(),
            updated_at                     TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 5. entitlements ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE entitlements (
            id                 UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id        UUID NOT NULL REFERENCES employees(id),
            leave_type_id      UUID NOT NULL REFERENCES leave_types(id),
            leave_year         INTEGER NOT NULL,
            period_start       DATE NOT NULL,
            period_end         DATE NOT NULL,
            yearly_entitlement NUMERIC(8,2) DEFAULT 0,
            accrued_actual     NUMERIC(12,6) DEFAULT 0,
            accrued_rounded    NUMERIC(8,2) DEFAULT 0,
            carry_forward      NUMERIC(8,2) DEFAULT 0,
            manual_adjustment  NUMERIC(8,2) DEFAULT 0,
            taken              NUMERIC(8,2) DEFAULT 0,
            remaining          NUMERIC(8,2) DEFAULT 0,
            accrued_through    DATE,
            version            INTEGER NOT NULL DEFAULT 1,
            is_active          BOOLEAN DEFAULT TRUE,
            created_at         TIMESTAMPTZ DEFAULT NOW(),
            updated_at         TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_entitlement_key UNIQUE (employee_id, leave_type_id, leave_year),
            CONSTRAINT ck_entitlement_balance CHECK (
                remaining = accrued_rounded + carry_forward + manual_adjustment - taken
            )
        )
    """)
    op.execute("CREATE INDEX idx_entitlements_employee ON entitlements(employee_id, leave_year)")

    # ── 6. leave requests ────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                       UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id              UUID NOT NULL REFERENCES employees(id),
            leave_type_id            UUID NOT NULL REFERENCES leave_types(id),
            entitlement_id           UUID REFERENCES entitlements(id),
            from_date                DATE NOT NULL,
            to_date                  DATE NOT NULL,
            duration_days            NUMERIC(8,2) NOT NULL,
            justification            TEXT,
            attachment_id            VARCHAR(100),
            post_leave               BOOLEAN DEFAULT FALSE,
            blocked_period_exception BOOLEAN DEFAULT FALSE,
            status                   leave_request_status NOT NULL DEFAULT 'submitted',
            version                  INTEGER NOT NULL DEFAULT 1,
            stage_entered_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            submitted_at             TIMESTAMPTZ DEFAULT NOW(),
            manager_id               UUID,
            manager_decided_at       TIMESTAMPTZ,
            hr_reviewer_id           UUID,
            hr_decided_at            TIMESTAMPTZ,
            rejection_reason         TEXT,
            return_reason            TEXT,
            cancelled_by             UUID,
            cancelled_at             TIMESTAMPTZ,
            consumed_days            NUMERIC(8,2) DEFAULT 0,
            irregular_flag           BOOLEAN DEFAULT FALSE,
            irregular_reason         TEXT,
            escalated_at             TIMESTAMPTZ,
            escalation_count         INTEGER DEFAULT 0,
            created_at               TIMESTAMPTZ DEFAULT NOW(),
            updated_at               TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_request_range CHECK (from_date <= to_date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_requests_employee_dates "
        "ON leave_requests(employee_id, from_date, to_date)"
    )
    op.execute(
        "CREATE INDEX ix_leave_requests_status_stage "
        "ON leave_requests(status, stage_entered_at)"
    )
    op.execute("""
        CREATE TABLE leave_request_events (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_request_id UUID NOT NULL REFERENCES leave_requests(id) ON DELETE CASCADE,
            action           VARCHAR(50) NOT NULL,
            from_status      leave_request_status,
            to_status        leave_request_status NOT NULL,
            actor_id         UUID,
            actor_role       VARCHAR(30),
            reason           TEXT,
            created_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX idx_leave_request_events_request "
        "ON leave_request_events(leave_request_id, created_at)"
    )

    # ── 7. ledger entries (append-only) ──────────────────────────────────
    op.execute("""
        CREATE TABLE leave_adjustments (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            entitlement_id   UUID NOT NULL REFERENCES entitlements(id),
            employee_id      UUID NOT NULL,
            leave_type_id    UUID NOT NULL,
            leave_year       INTEGER NOT NULL,
            adjustment_type  adjustment_type NOT NULL,
            amount           NUMERIC(8,2) NOT NULL,
            accrual_actual   NUMERIC(12,6),
            reason           TEXT NOT NULL,
            actor_id         UUID,
            is_override      BOOLEAN DEFAULT FALSE,
            leave_request_id UUID REFERENCES leave_requests(id),
            balance_after    NUMERIC(8,2) NOT NULL,
            created_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_adjustments_entitlement "
        "ON leave_adjustments(entitlement_id, created_at)"
    )
    op.execute(
        "CREATE INDEX ix_leave_adjustments_employee "
        "ON leave_adjustments(employee_id, leave_type_id)"
    )
    # Entries are never edited or removed
    op.execute("REVOKE UPDATE, DELETE ON leave_adjustments FROM PUBLIC")

    # ── 8. carry-forward records ─────────────────────────────────────────
    op.execute("""
        CREATE TABLE carry_forward_records (
            id                 UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id        UUID NOT NULL REFERENCES employees(id),
            leave_type_id      UUID NOT NULL REFERENCES leave_types(id),
            source_year        INTEGER NOT NULL,
            target_year        INTEGER NOT NULL,
            carry_forward_days NUMERIC(8,2) NOT NULL,
            expiry_date        DATE,
            reason             TEXT,
            overridden         BOOLEAN DEFAULT FALSE,
            actor_id           UUID,
            created_at         TIMESTAMPTZ DEFAULT NOW(),
            updated_at         TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_carry_forward_target UNIQUE (employee_id, leave_type_id, target_year)
        )
    """)

    # ── 9. notifications ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            recipient_id UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            type         notification_type DEFAULT 'info',
            title        VARCHAR(200) NOT NULL,
            message      TEXT NOT NULL,
            action_url   VARCHAR(500),
            entity_type  VARCHAR(50),
            entity_id    UUID,
            is_read      BOOLEAN DEFAULT FALSE,
            read_at      TIMESTAMPTZ,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX idx_notifications_recipient "
        "ON notifications(recipient_id, is_read, created_at DESC)"
    )

    # ── 10. audit_trail ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id    UUID,
            action      VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id   UUID NOT NULL,
            old_values  JSONB,
            new_values  JSONB,
            ip_address  INET,
            user_agent  TEXT,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id   ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity     ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")
    op.execute("CREATE INDEX ix_audit_trail_action     ON audit_trail(action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "notifications",
        "carry_forward_records",
        "leave_adjustments",
        "leave_request_events",
        "leave_requests",
        "entitlements",
        "leave_policies",
        "leave_types",
        "blocked_periods",
        "calendar_holidays",
        "leave_calendars",
        "role_assignments",
        "employees",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
