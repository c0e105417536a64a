"""
SQLite model store: latest saved model per identity plus its version history.
"""

import json
import uuid
from datetime import datetime
from typing import List

from pydantic import ValidationError

from ..models.snapshot import ModelSnapshot, SaveRequest, SaveResponse, VersionInfo
from ..services.errors import ModelNotFoundError, StoreError
from ..services.logging_service import get_structured_logger
from .base import DatabaseConnection

logger = get_structured_logger().get_logger(__name__)


class SqliteModelRepository:
    """Implements the model store contract on a local SQLite database."""

    def __init__(self, db: DatabaseConnection):
        self.db = db
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self.db.get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cash_flow_models (
                    identity TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    saved_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cash_flow_versions (
                    version_id TEXT PRIMARY KEY,
                    identity TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    label TEXT NOT NULL DEFAULT '',
                    row_count INTEGER NOT NULL DEFAULT 0,
                    payload TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_versions_identity "
                "ON cash_flow_versions(identity, created_at)"
            )

    @staticmethod
    def _parse(payload: str, identity: str) -> ModelSnapshot:
        try:
            return ModelSnapshot.model_validate_json(payload)
        except ValidationError as e:
            raise StoreError("Stored model is corrupt", detail=f"{identity}: {e}") from e

    def load(self, identity: str) -> ModelSnapshot:
        with self.db.get_connection() as conn:
            row = conn.execute(
                "SELECT payload, saved_at FROM cash_flow_models WHERE identity = ?", (identity,)
            ).fetchone()
        if row is None:
            raise ModelNotFoundError(detail=f"No saved model for {identity}")

        snapshot = self._parse(row["payload"], identity)
        snapshot.saved_at = row["saved_at"]
        logger.info("Model loaded", operation="load", identity=identity, rows=len(snapshot.rows))
        return snapshot

    def save(self, identity: str, request: SaveRequest) -> SaveResponse:
        """Upsert the model and record it as a new version."""
        saved_at = datetime.now().isoformat()
        payload = request.to_payload()
        payload["savedAt"] = saved_at
        text = json.dumps(payload)
        version_id = uuid.uuid4().hex

        with self.db.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO cash_flow_models (identity, payload, saved_at) VALUES (?, ?, ?)
                ON CONFLICT(identity) DO UPDATE SET payload = excluded.payload, saved_at = excluded.saved_at
                """,
                (identity, text, saved_at),
            )
            conn.execute(
                """
                INSERT INTO cash_flow_versions (version_id, identity, created_at, label, row_count, payload)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (version_id, identity, saved_at, f"Saved {saved_at[:16].replace('T', ' ')}", len(request.rows), text),
            )

        logger.info("Model saved", operation="save", identity=identity, version_id=version_id)
        return SaveResponse(saved_at=saved_at)

    def list_versions(self, identity: str) -> List[VersionInfo]:
        with self.db.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT version_id, created_at, label, row_count FROM cash_flow_versions
                WHERE identity = ? ORDER BY created_at DESC, rowid DESC
                """,
                (identity,),
            ).fetchall()
        return [VersionInfo.model_validate(r) for r in rows]

    def rollback(self, identity: str, version_id: str) -> ModelSnapshot:
        """Make a stored version the live model again and return it."""
        saved_at = datetime.now().isoformat()
        with self.db.get_connection() as conn:
            row = conn.execute(
                "SELECT payload FROM cash_flow_versions WHERE identity = ? AND version_id = ?",
                (identity, version_id),
            ).fetchone()
            if row is None:
                raise ModelNotFoundError(detail=f"Unknown version {version_id}")
            conn.execute(
                """
                INSERT INTO cash_flow_models (identity, payload, saved_at) VALUES (?, ?, ?)
                ON CONFLICT(identity) DO UPDATE SET payload = excluded.payload, saved_at = excluded.saved_at
                """,
                (identity, row["payload"], saved_at),
            )

        logger.info("Model rolled back", operation="rollback", identity=identity, version_id=version_id)
        return self.load(identity)

    def clear_forecast(self, identity: str) -> None:
        """Truncate the saved model back to its actual buckets."""
        try:
            snapshot = self.load(identity)
        except ModelNotFoundError:
            return
        if not snapshot.rows or not snapshot.forecast_bucket_count:
            return

        actual = snapshot.actual_bucket_count or (len(snapshot.rows[0].values) - snapshot.forecast_bucket_count)
        for row in snapshot.rows:
            row.values = row.values[:actual]
            row.formula = None
        snapshot.forecast_bucket_count = 0
        snapshot.actual_bucket_count = actual

        with self.db.get_connection() as conn:
            conn.execute(
                "UPDATE cash_flow_models SET payload = ? WHERE identity = ?",
                (json.dumps(snapshot.to_payload()), identity),
            )
        logger.info("Saved forecast cleared", operation="clear_forecast", identity=identity)
