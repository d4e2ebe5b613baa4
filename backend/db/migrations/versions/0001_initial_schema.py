"""Initial schema for the trade settlement and margin risk database."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from alembic import op

logger = logging.getLogger(__name__)

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


ENUM_DDL: tuple[str, ...] = (
    "CREATE TYPE trade_side_enum AS ENUM ('BUY', 'SELL');",
    "CREATE TYPE margin_status_enum AS ENUM ('NORMAL', 'MARGIN_CALL', 'FORCE_SELL');",
    (
        "CREATE TYPE margin_alert_type_enum AS ENUM ('MARGIN_CALL', 'FORCE_SELL_TRIGGERED', "
        "'DEADLINE_BREACH', 'EXPOSURE_BREACH', 'CONCENTRATION_BREACH');"
    ),
    (
        "CREATE TYPE ledger_entry_type_enum AS ENUM ('OPENING_BALANCE', 'DEPOSIT', 'WITHDRAWAL', "
        "'BUY_TRADE', 'SELL_TRADE', 'COMMISSION', 'TAX', 'DIVIDEND', 'IPO_ALLOTMENT', 'INTEREST_CHARGE');"
    ),
    "CREATE TYPE exchange_enum AS ENUM ('DSE', 'CSE');",
)

TABLE_DDL: tuple[str, ...] = (
    """
    CREATE TABLE clients (
        client_id UUID NOT NULL DEFAULT gen_random_uuid(),
        bo_id TEXT,
        client_code TEXT,
        name TEXT,
        income_status TEXT,
        kyc_completed BOOLEAN NOT NULL DEFAULT FALSE,
        account_type TEXT,
        status TEXT NOT NULL DEFAULT 'active',
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_clients PRIMARY KEY (client_id),
        CONSTRAINT uq_clients_bo_id UNIQUE (bo_id),
        CONSTRAINT uq_clients_client_code UNIQUE (client_code),
        CONSTRAINT ck_clients_status CHECK (status IN ('active', 'suspended', 'closed', 'pending_review')),
        CONSTRAINT ck_clients_account_type CHECK (account_type IS NULL OR account_type IN ('Cash', 'Margin')),
        CONSTRAINT ck_clients_income_status CHECK (
            income_status IS NULL
            OR income_status IN ('employed', 'self_employed', 'student', 'homemaker', 'retired')
        )
    );
    """,
    """
    CREATE TABLE securities (
        isin TEXT NOT NULL,
        security_code TEXT,
        company_name TEXT,
        asset_class TEXT,
        category TEXT,
        board TEXT,
        sector TEXT,
        free_float_market_cap NUMERIC(20,4),
        trailing_pe NUMERIC(12,4),
        annual_dividend_pct NUMERIC(8,4),
        status TEXT NOT NULL DEFAULT 'active',
        is_marginable BOOLEAN NOT NULL DEFAULT FALSE,
        marginability_reason TEXT,
        marginability_updated_at_utc TIMESTAMPTZ,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_securities PRIMARY KEY (isin),
        CONSTRAINT uq_securities_security_code UNIQUE (security_code),
        CONSTRAINT ck_securities_status CHECK (status IN ('active', 'suspended'))
    );
    """,
    """
    CREATE TABLE raw_trades (
        id BIGINT GENERATED ALWAYS AS IDENTITY,
        source exchange_enum NOT NULL,
        status TEXT,
        side TEXT,
        bo_id TEXT,
        client_code TEXT,
        isin TEXT,
        security_code TEXT,
        board TEXT,
        category TEXT,
        asset_class TEXT,
        trade_date DATE,
        trade_time TIME,
        quantity INTEGER,
        price NUMERIC(20,4),
        value NUMERIC(20,2),
        exec_id TEXT,
        order_id TEXT,
        session TEXT,
        fill_type TEXT,
        compulsory_spot BOOLEAN NOT NULL DEFAULT FALSE,
        processed BOOLEAN NOT NULL DEFAULT FALSE,
        error_message TEXT,
        import_audit_id BIGINT,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_raw_trades PRIMARY KEY (id),
        CONSTRAINT ck_raw_trades_side CHECK (side IS NULL OR side IN ('B', 'S'))
    );
    """,
    """
    CREATE TABLE trade_executions (
        exec_id TEXT NOT NULL,
        order_id TEXT,
        client_id UUID NOT NULL,
        isin TEXT NOT NULL,
        exchange exchange_enum NOT NULL,
        side trade_side_enum NOT NULL,
        quantity INTEGER NOT NULL,
        price NUMERIC(20,4) NOT NULL,
        value NUMERIC(20,2) NOT NULL,
        trade_date DATE NOT NULL,
        trade_time TIME,
        settlement_date DATE,
        session TEXT,
        fill_type TEXT,
        category TEXT,
        board TEXT,
        commission NUMERIC(20,2) NOT NULL DEFAULT 0,
        exchange_fee NUMERIC(20,2) NOT NULL DEFAULT 0,
        depository_fee NUMERIC(20,2) NOT NULL DEFAULT 0,
        tax NUMERIC(20,2) NOT NULL DEFAULT 0,
        net_value NUMERIC(20,2) NOT NULL,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_trade_executions PRIMARY KEY (exec_id),
        CONSTRAINT fk_trade_executions_client FOREIGN KEY (client_id)
            REFERENCES clients (client_id) ON UPDATE RESTRICT ON DELETE RESTRICT,
        CONSTRAINT fk_trade_executions_security FOREIGN KEY (isin)
            REFERENCES securities (isin) ON UPDATE RESTRICT ON DELETE RESTRICT,
        CONSTRAINT ck_trade_executions_quantity_pos CHECK (quantity > 0)
    );
    """,
    """
    CREATE TABLE holdings (
        client_id UUID NOT NULL,
        isin TEXT NOT NULL,
        quantity INTEGER NOT NULL DEFAULT 0,
        average_cost NUMERIC(20,2) NOT NULL DEFAULT 0,
        total_invested NUMERIC(20,2) NOT NULL DEFAULT 0,
        realized_pl NUMERIC(20,2) NOT NULL DEFAULT 0,
        as_of_date DATE,
        updated_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_holdings PRIMARY KEY (client_id, isin),
        CONSTRAINT fk_holdings_client FOREIGN KEY (client_id)
            REFERENCES clients (client_id) ON UPDATE RESTRICT ON DELETE RESTRICT,
        CONSTRAINT fk_holdings_security FOREIGN KEY (isin)
            REFERENCES securities (isin) ON UPDATE RESTRICT ON DELETE RESTRICT,
        CONSTRAINT ck_holdings_quantity_nonneg CHECK (quantity >= 0)
    );
    """,
    """
    CREATE TABLE cash_ledger (
        id BIGINT GENERATED ALWAYS AS IDENTITY,
        client_id UUID NOT NULL,
        transaction_date DATE NOT NULL,
        value_date DATE,
        amount NUMERIC(20,2) NOT NULL,
        running_balance NUMERIC(20,2) NOT NULL,
        entry_type ledger_entry_type_enum NOT NULL,
        reference TEXT,
        narration TEXT,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_cash_ledger PRIMARY KEY (id),
        CONSTRAINT fk_cash_ledger_client FOREIGN KEY (client_id)
            REFERENCES clients (client_id) ON UPDATE RESTRICT ON DELETE RESTRICT
    );
    """,
    """
    CREATE TABLE margin_accounts (
        client_id UUID NOT NULL,
        loan_balance NUMERIC(20,2) NOT NULL DEFAULT 0,
        margin_ratio NUMERIC(10,4),
        total_portfolio_value NUMERIC(20,2) NOT NULL DEFAULT 0,
        marginable_portfolio_value NUMERIC(20,2) NOT NULL DEFAULT 0,
        client_equity NUMERIC(20,2) NOT NULL DEFAULT 0,
        maintenance_status margin_status_enum NOT NULL DEFAULT 'NORMAL',
        applied_ratio TEXT NOT NULL DEFAULT 'N/A',
        margin_call_count INTEGER NOT NULL DEFAULT 0,
        margin_call_deadline DATE,
        last_margin_call_date DATE,
        updated_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_margin_accounts PRIMARY KEY (client_id),
        CONSTRAINT fk_margin_accounts_client FOREIGN KEY (client_id)
            REFERENCES clients (client_id) ON UPDATE RESTRICT ON DELETE RESTRICT,
        CONSTRAINT ck_margin_accounts_loan_nonneg CHECK (loan_balance >= 0),
        CONSTRAINT ck_margin_accounts_call_count_nonneg CHECK (margin_call_count >= 0)
    );
    """,
    """
    CREATE TABLE margin_alerts (
        id BIGINT GENERATED ALWAYS AS IDENTITY,
        client_id UUID NOT NULL,
        alert_date DATE NOT NULL,
        alert_type margin_alert_type_enum NOT NULL,
        deadline_date DATE,
        details JSONB NOT NULL DEFAULT '{}'::jsonb,
        resolved BOOLEAN NOT NULL DEFAULT FALSE,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_margin_alerts PRIMARY KEY (id),
        CONSTRAINT fk_margin_alerts_client FOREIGN KEY (client_id)
            REFERENCES clients (client_id) ON UPDATE RESTRICT ON DELETE RESTRICT
    );
    """,
    """
    CREATE TABLE daily_prices (
        isin TEXT NOT NULL,
        price_date DATE NOT NULL,
        open_price NUMERIC(20,4),
        high_price NUMERIC(20,4),
        low_price NUMERIC(20,4),
        close_price NUMERIC(20,4),
        volume BIGINT,
        source exchange_enum,
        CONSTRAINT pk_daily_prices PRIMARY KEY (isin, price_date),
        CONSTRAINT fk_daily_prices_security FOREIGN KEY (isin)
            REFERENCES securities (isin) ON UPDATE RESTRICT ON DELETE RESTRICT
    );
    """,
    """
    CREATE TABLE daily_snapshots (
        client_id UUID NOT NULL,
        snapshot_date DATE NOT NULL,
        total_portfolio_value NUMERIC(20,2) NOT NULL,
        cash_balance NUMERIC(20,2) NOT NULL,
        loan_balance NUMERIC(20,2) NOT NULL,
        net_equity NUMERIC(20,2) NOT NULL,
        margin_utilization_pct NUMERIC(10,4) NOT NULL,
        unrealized_pl NUMERIC(20,2) NOT NULL,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_daily_snapshots PRIMARY KEY (client_id, snapshot_date),
        CONSTRAINT fk_daily_snapshots_client FOREIGN KEY (client_id)
            REFERENCES clients (client_id) ON UPDATE RESTRICT ON DELETE RESTRICT
    );
    """,
    """
    CREATE TABLE fee_schedule (
        id INTEGER GENERATED ALWAYS AS IDENTITY,
        fee_type TEXT NOT NULL,
        rate NUMERIC(12,8) NOT NULL,
        min_amount NUMERIC(20,2) NOT NULL DEFAULT 0,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        effective_from DATE NOT NULL DEFAULT CURRENT_DATE,
        effective_to DATE,
        CONSTRAINT pk_fee_schedule PRIMARY KEY (id),
        CONSTRAINT ck_fee_schedule_fee_type CHECK (
            fee_type IN ('BROKERAGE_COMMISSION', 'EXCHANGE_FEE', 'CDBL_FEE', 'AIT')
        ),
        CONSTRAINT ck_fee_schedule_rate_range CHECK (rate >= 0 AND rate <= 1),
        CONSTRAINT ck_fee_schedule_effective_window CHECK (effective_to IS NULL OR effective_to > effective_from)
    );
    """,
    """
    CREATE TABLE margin_config (
        id INTEGER GENERATED ALWAYS AS IDENTITY,
        parameter_name TEXT NOT NULL,
        parameter_value NUMERIC NOT NULL,
        description TEXT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        effective_from DATE NOT NULL DEFAULT CURRENT_DATE,
        effective_to DATE,
        CONSTRAINT pk_margin_config PRIMARY KEY (id),
        CONSTRAINT uq_margin_config_name_effective_from UNIQUE (parameter_name, effective_from),
        CONSTRAINT ck_margin_config_effective_window CHECK (effective_to IS NULL OR effective_to > effective_from)
    );
    """,
)

INDEX_DDL: tuple[str, ...] = (
    "CREATE INDEX idx_raw_trades_pending ON raw_trades (id) WHERE processed = FALSE;",
    "CREATE INDEX idx_raw_trades_exec_id ON raw_trades (exec_id);",
    "CREATE INDEX idx_raw_trades_import_audit ON raw_trades (import_audit_id);",
    "CREATE INDEX idx_trade_executions_client_date ON trade_executions (client_id, trade_date);",
    "CREATE INDEX idx_holdings_client ON holdings (client_id);",
    "CREATE INDEX idx_cash_ledger_client_id_desc ON cash_ledger (client_id, id DESC);",
    "CREATE INDEX idx_cash_ledger_reference ON cash_ledger (reference);",
    "CREATE INDEX idx_margin_alerts_client_date ON margin_alerts (client_id, alert_date);",
    (
        "CREATE UNIQUE INDEX uqix_margin_alerts_breach_per_day ON margin_alerts (client_id, alert_date, alert_type) "
        "WHERE alert_type IN ('DEADLINE_BREACH', 'EXPOSURE_BREACH', 'CONCENTRATION_BREACH');"
    ),
    "CREATE INDEX idx_daily_prices_date_desc ON daily_prices (price_date DESC);",
    "CREATE INDEX idx_clients_account_type ON clients (account_type);",
)

APPEND_ONLY_DDL: tuple[str, ...] = (
    """
    CREATE OR REPLACE FUNCTION fn_enforce_append_only()
    RETURNS trigger
    LANGUAGE plpgsql
    AS $$
    BEGIN
        RAISE EXCEPTION '% is append-only; % is not allowed', TG_TABLE_NAME, TG_OP;
    END;
    $$;
    """,
    """
    CREATE TRIGGER trg_trade_executions_append_only
    BEFORE UPDATE OR DELETE ON trade_executions
    FOR EACH ROW EXECUTE FUNCTION fn_enforce_append_only();
    """,
    """
    CREATE TRIGGER trg_margin_alerts_append_only
    BEFORE DELETE ON margin_alerts
    FOR EACH ROW EXECUTE FUNCTION fn_enforce_append_only();
    """,
)


def _execute_all(statements: Sequence[str]) -> None:
    """Execute an ordered sequence of SQL statements."""

    for statement in statements:
        try:
            op.execute(statement)
        except Exception:
            logger.exception("Migration statement failed.")
            raise


def upgrade() -> None:
    """Apply the initial schema migration."""

    logger.info("Starting initial schema migration upgrade.")
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    _execute_all(ENUM_DDL)
    _execute_all(TABLE_DDL)
    _execute_all(INDEX_DDL)
    _execute_all(APPEND_ONLY_DDL)
    logger.info("Completed initial schema migration upgrade.")


def downgrade() -> None:
    """Revert the initial schema migration."""

    logger.info("Starting initial schema migration downgrade.")
    _execute_all(
        (
            "DROP TRIGGER IF EXISTS trg_margin_alerts_append_only ON margin_alerts;",
            "DROP TRIGGER IF EXISTS trg_trade_executions_append_only ON trade_executions;",
            "DROP FUNCTION IF EXISTS fn_enforce_append_only();",
            "DROP TABLE IF EXISTS margin_config;",
            "DROP TABLE IF EXISTS fee_schedule;",
            "DROP TABLE IF EXISTS daily_snapshots;",
            "DROP TABLE IF EXISTS daily_prices;",
            "DROP TABLE IF EXISTS margin_alerts;",
            "DROP TABLE IF EXISTS margin_accounts;",
            "DROP TABLE IF EXISTS cash_ledger;",
            "DROP TABLE IF EXISTS holdings;",
            "DROP TABLE IF EXISTS trade_executions;",
            "DROP TABLE IF EXISTS raw_trades;",
            "DROP TABLE IF EXISTS securities;",
            "DROP TABLE IF EXISTS clients;",
            "DROP TYPE IF EXISTS exchange_enum;",
            "DROP TYPE IF EXISTS ledger_entry_type_enum;",
            "DROP TYPE IF EXISTS margin_alert_type_enum;",
            "DROP TYPE IF EXISTS margin_status_enum;",
            "DROP TYPE IF EXISTS trade_side_enum;",
        )
    )
    logger.info("Completed initial schema migration downgrade.")
