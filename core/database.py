"""
Database layer using aiosqlite for Volume Radar.
Persists user scan settings and the last generated report as versioned JSON
documents in a key-value table.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import aiosqlite
from pydantic import ValidationError

from core.migrations import migrate_report_state, migrate_settings
from core.models import ReportState, ScanSettings

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"
REPORT_STATE_KEY = "report_state"


class Database:
    """Async key-value store using SQLite."""

    def __init__(self, db_path: str):
        """Initialize database with path."""
        self.db_path = db_path
        self.conn: Optional[aiosqlite.Connection] = None

    async def connect(self):
        """Connect to the database and create tables if needed."""
        self.conn = await aiosqlite.connect(self.db_path)
        self.conn.row_factory = aiosqlite.Row
        await self._create_tables()
        logger.info(f"Database connected: {self.db_path}")

    async def close(self):
        """Close database connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None
            logger.info("Database connection closed")

    async def _create_tables(self):
        """Create database tables if they don't exist."""
        await self.conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        await self.conn.commit()

    # Raw key-value operations
    async def get_value(self, key: str) -> Optional[Dict[str, Any]]:
        """Load a JSON document, None if missing or unreadable."""
        cursor = await self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,))
        row = await cursor.fetchone()
        if not row:
            return None

        try:
            return json.loads(row['value'])
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt JSON stored under {key}: {e}")
            return None

    async def set_value(self, key: str, value: Dict[str, Any]):
        """Store a JSON document, replacing any previous value."""
        await self.conn.execute("""
            INSERT INTO kv (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value=excluded.value,
                updated_at=excluded.updated_at
        """, (key, json.dumps(value), datetime.utcnow().isoformat()))
        await self.conn.commit()

    # Settings
    async def get_settings(self, defaults: Optional[ScanSettings] = None) -> ScanSettings:
        """Load scan settings, migrating older schemas and filling missing fields."""
        defaults = defaults or ScanSettings()
        data = await self.get_value(SETTINGS_KEY)
        if data is None:
            return defaults

        try:
            migrated = migrate_settings(data)
            merged = {**defaults.model_dump(mode="json"), **migrated}
            settings = ScanSettings(**merged)
        except (ValueError, ValidationError) as e:
            logger.error(f"Stored settings unusable, falling back to defaults: {e}")
            return defaults

        if data.get("schema_version") != settings.schema_version:
            await self.save_settings(settings)
        return settings

    async def save_settings(self, settings: ScanSettings):
        await self.set_value(SETTINGS_KEY, settings.model_dump(mode="json"))

    # Report state
    async def get_report_state(self) -> Optional[ReportState]:
        """Load the last report, None if nothing usable was stored."""
        data = await self.get_value(REPORT_STATE_KEY)
        if data is None:
            return None

        try:
            return ReportState(**migrate_report_state(data))
        except (ValueError, ValidationError) as e:
            logger.error(f"Stored report state unusable: {e}")
            return None

    async def save_report_state(self, state: ReportState):
        await self.set_value(REPORT_STATE_KEY, state.model_dump(mode="json"))
