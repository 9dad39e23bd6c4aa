"""
Ledger Schema

Column names are camelCase to match the model aliases, so rows decode
directly into the pydantic models.

Money columns are TEXT holding fixed two-place decimal strings ("12.50").
All balance arithmetic happens in billbook.money, never in SQL.
Timestamps are TEXT in a fixed-width naive-UTC format, so lexical order is
chronological order.
"""

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS Account (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        money TEXT NOT NULL DEFAULT '0.00',
        card TEXT,
        isDefault INTEGER NOT NULL DEFAULT 0,
        remark TEXT,
        orderId INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Category (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        level INTEGER NOT NULL DEFAULT 0,
        pid INTEGER REFERENCES Category(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Tag (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Ledger (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS LedgerRelationAccount (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        ledgerId INTEGER NOT NULL REFERENCES Ledger(id),
        accountId INTEGER NOT NULL REFERENCES Account(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Bill (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        price TEXT NOT NULL,
        promotion TEXT,
        time TEXT NOT NULL,
        modification TEXT,
        accountId INTEGER NOT NULL REFERENCES Account(id),
        categoryId INTEGER NOT NULL REFERENCES Category(id),
        remark TEXT,
        ledgerId INTEGER REFERENCES Ledger(id),
        orderId INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS BillPeople (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        title TEXT,
        remark TEXT,
        accountId INTEGER REFERENCES Account(id),
        money TEXT NOT NULL,
        time TEXT NOT NULL,
        status INTEGER NOT NULL DEFAULT 0,
        orderId INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS OrderOperationRecord (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        accountId INTEGER NOT NULL REFERENCES Account(id),
        date TEXT NOT NULL,
        balanceBefore TEXT NOT NULL,
        balanceAfter TEXT NOT NULL,
        isInit INTEGER NOT NULL DEFAULT 0,
        billId TEXT REFERENCES Bill(id),
        billPeopleId TEXT REFERENCES BillPeople(id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_snapshot_account_position
        ON OrderOperationRecord (accountId, date, id)
    """,
    """
    CREATE TABLE IF NOT EXISTS TagBillRelation (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tagId INTEGER NOT NULL REFERENCES Tag(id),
        billId TEXT NOT NULL REFERENCES Bill(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS BillPeopleRelation (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        billPeopleId TEXT NOT NULL REFERENCES BillPeople(id),
        billId TEXT NOT NULL REFERENCES Bill(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS AuditLog (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        eventId TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        eventType TEXT NOT NULL,
        severity TEXT NOT NULL,
        entityType TEXT,
        entityId TEXT,
        correlationId TEXT,
        description TEXT NOT NULL,
        details TEXT,
        errorCode TEXT,
        errorMessage TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_audit_correlation
        ON AuditLog (correlationId)
    """,
]
