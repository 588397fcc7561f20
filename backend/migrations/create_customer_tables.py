"""
Database Migration Script: Create Customer Tables

Creates the customer record schema:
- customers (tax_id encrypted, optimistic version column)
- addresses (partial index on primary address)
- customer_documents (document_number encrypted)
- customer_status_changes (status audit trail)

Every statement is idempotent, so the script can be re-run safely.

Run this script directly:
    cd backend && python migrations/create_customer_tables.py
    cd backend && python migrations/create_customer_tables.py --drop
"""

import asyncio
import os
import sys
from typing import List

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine


CUSTOMER_TABLES = ["customers", "addresses", "customer_documents", "customer_status_changes"]

# Tables whose updated_at the repository writes
STAMPED_TABLES = ("customers", "addresses", "customer_documents")


def _enum_type(name: str, values: List[str]) -> str:
    labels = ", ".join(f"'{v}'" for v in values)
    return f"""
        DO $$ BEGIN
            CREATE TYPE {name} AS ENUM ({labels});
        EXCEPTION
            WHEN duplicate_object THEN NULL;
        END $$;
    """


# One statement per entry: asyncpg prepares each statement separately
UP_STATEMENTS = [
    _enum_type("customer_status", ["Pending", "Active", "Inactive", "Suspended", "Closed"]),
    _enum_type("address_type", ["Physical", "Mailing", "Business"]),
    _enum_type("document_type", [
        "Passport", "DriversLicense", "NationalID", "SSN", "TaxID", "UtilityBill", "BankStatement",
    ]),
    _enum_type("verification_status", ["Pending", "Verified", "Expired", "Rejected"]),

    """
    CREATE TABLE IF NOT EXISTS customers (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        customer_number VARCHAR(50) NOT NULL UNIQUE,
        first_name VARCHAR(100) NOT NULL,
        middle_name VARCHAR(100),
        last_name VARCHAR(100) NOT NULL,
        date_of_birth DATE NOT NULL,
        tax_id TEXT NOT NULL DEFAULT '',  -- encrypted
        email VARCHAR(255) NOT NULL,
        phone VARCHAR(50) NOT NULL DEFAULT '',
        status customer_status NOT NULL DEFAULT 'Pending',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        created_by VARCHAR(100) NOT NULL,
        updated_by VARCHAR(100),
        version INTEGER NOT NULL DEFAULT 1
    )
    """,

    """
    CREATE TABLE IF NOT EXISTS addresses (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        customer_id UUID NOT NULL REFERENCES customers(id) ON DELETE CASCADE,
        address_type address_type NOT NULL DEFAULT 'Physical',
        street1 VARCHAR(255) NOT NULL,
        street2 VARCHAR(255),
        city VARCHAR(100) NOT NULL,
        state VARCHAR(100) NOT NULL,
        postal_code VARCHAR(20) NOT NULL,
        country VARCHAR(100) NOT NULL,
        is_primary BOOLEAN NOT NULL DEFAULT FALSE,
        valid_from TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        valid_to TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,

    """
    CREATE TABLE IF NOT EXISTS customer_documents (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        customer_id UUID NOT NULL REFERENCES customers(id) ON DELETE CASCADE,
        document_type document_type NOT NULL,
        document_number TEXT NOT NULL,  -- encrypted
        issuing_authority VARCHAR(255) NOT NULL,
        issuing_country VARCHAR(100) NOT NULL,
        issue_date DATE NOT NULL,
        expiry_date DATE NOT NULL,
        verification_status verification_status NOT NULL DEFAULT 'Pending',
        verified_at TIMESTAMPTZ,
        verified_by VARCHAR(100),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,

    """
    CREATE TABLE IF NOT EXISTS customer_status_changes (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        customer_id UUID NOT NULL REFERENCES customers(id) ON DELETE CASCADE,
        previous_status customer_status NOT NULL,
        new_status customer_status NOT NULL,
        reason TEXT NOT NULL,
        changed_by VARCHAR(100) NOT NULL,
        changed_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,

    # Indexes for common queries
    "CREATE INDEX IF NOT EXISTS idx_customers_customer_number ON customers(customer_number)",
    "CREATE INDEX IF NOT EXISTS idx_customers_email ON customers(email)",
    "CREATE INDEX IF NOT EXISTS idx_customers_status ON customers(status)",
    "CREATE INDEX IF NOT EXISTS idx_customers_created_at ON customers(created_at)",
    """
    CREATE INDEX IF NOT EXISTS idx_customers_name_gin ON customers USING GIN (
        to_tsvector('english', first_name || ' ' || COALESCE(middle_name, '') || ' ' || last_name)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_customers_email_gin ON customers USING GIN (to_tsvector('english', email))",
    "CREATE INDEX IF NOT EXISTS idx_addresses_customer_id ON addresses(customer_id)",
    """
    CREATE INDEX IF NOT EXISTS idx_addresses_is_primary
        ON addresses(customer_id, is_primary) WHERE is_primary = TRUE
    """,
    "CREATE INDEX IF NOT EXISTS idx_customer_documents_customer_id ON customer_documents(customer_id)",
    """
    CREATE INDEX IF NOT EXISTS idx_customer_documents_verification_status
        ON customer_documents(verification_status)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_customer_status_changes_customer_id
        ON customer_status_changes(customer_id, changed_at DESC)
    """,

    # updated_at is written by the repository; drop triggers left by
    # earlier versions of this schema
    *[f"DROP TRIGGER IF EXISTS update_{table}_updated_at ON {table}" for table in STAMPED_TABLES],
    "DROP FUNCTION IF EXISTS update_updated_at_column()",
]

DOWN_STATEMENTS = [
    "DROP TABLE IF EXISTS customer_status_changes",
    "DROP TABLE IF EXISTS customer_documents",
    "DROP TABLE IF EXISTS addresses",
    "DROP TABLE IF EXISTS customers",
    "DROP TYPE IF EXISTS verification_status",
    "DROP TYPE IF EXISTS document_type",
    "DROP TYPE IF EXISTS address_type",
    "DROP TYPE IF EXISTS customer_status",
]


async def up(engine: AsyncEngine) -> List[str]:
    """Create the customer schema. Returns the customer tables present afterwards."""
    async with engine.begin() as conn:
        for statement in UP_STATEMENTS:
            await conn.execute(text(statement))

        result = await conn.execute(text("""
            SELECT table_name FROM information_schema.tables
            WHERE table_schema = 'public'
            AND table_name IN ('customers', 'addresses', 'customer_documents', 'customer_status_changes')
            ORDER BY table_name
        """))
        return [row[0] for row in result.fetchall()]


async def down(engine: AsyncEngine) -> None:
    """Drop the customer schema."""
    async with engine.begin() as conn:
        for statement in DOWN_STATEMENTS:
            await conn.execute(text(statement))


async def main(drop: bool = False):
    from config import get_settings
    from database import create_engine_from_settings

    engine = create_engine_from_settings(get_settings())
    try:
        if drop:
            print("Dropping customer tables...")
            await down(engine)
            print("Tables dropped")
        else:
            print("Creating customer tables...")
            tables = await up(engine)
            print(f"Verified tables: {tables}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Manage customer tables")
    parser.add_argument("--drop", action="store_true", help="Drop tables instead of create")
    args = parser.parse_args()

    asyncio.run(main(drop=args.drop))
