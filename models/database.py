"""SQLite persistence for alerts, per-user settings and the digest queue."""
import json
import sqlite3
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path

from models.alerts import StrategyAlert

logger = logging.getLogger("stratalerts.db")


class Database:
    def __init__(self, db_path="data/strategy_alerts.db"):
        self.db_path = db_path
        self.conn = None
        self._lock = threading.Lock()

    def connect(self):
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()
        return self

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *args):
        self.close()

    def _create_tables(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS strategy_alerts (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                strategy_id TEXT NOT NULL,
                type TEXT NOT NULL,
                severity TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                payload TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_alerts_user
                ON strategy_alerts(user_id, created_at);

            CREATE TABLE IF NOT EXISTS alert_configurations (
                user_id TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS notification_preferences (
                user_id TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS digest_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                alert_id TEXT NOT NULL,
                channel TEXT NOT NULL,
                bucket TEXT NOT NULL,
                payload TEXT NOT NULL,
                queued_at TEXT NOT NULL,
                sent_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_digest_pending
                ON digest_queue(bucket, sent_at);
        """)
        self.conn.commit()

    def _write(self, sql, params):
        with self._lock:
            cur = self.conn.execute(sql, params)
            self.conn.commit()
            return cur

    # --- Alerts ---

    def save_alert(self, alert):
        """Insert or replace the full alert record."""
        self._write("""
            INSERT OR REPLACE INTO strategy_alerts
            (id, user_id, strategy_id, type, severity, status, created_at, payload)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            alert.id, alert.user_id, alert.strategy_id, alert.type.value,
            alert.severity.value, alert.status.value, alert.created_at.isoformat(),
            json.dumps(alert.to_dict()),
        ))
        logger.debug(f"Saved alert {alert.id} ({alert.status.value})")

    def get_alerts(self, user_id=None):
        query = "SELECT payload FROM strategy_alerts"
        params = []
        if user_id is not None:
            query += " WHERE user_id = ?"
            params.append(user_id)
        query += " ORDER BY created_at ASC"
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [StrategyAlert.from_dict(json.loads(r["payload"])) for r in rows]

    def get_alert_stats(self, user_id):
        with self._lock:
            rows = self.conn.execute("""
                SELECT status, COUNT(*) as count FROM strategy_alerts
                WHERE user_id = ? GROUP BY status
            """, (user_id,)).fetchall()
        return {r["status"]: r["count"] for r in rows}

    # --- Per-user settings ---

    def _save_settings(self, table, user_id, payload):
        self._write(f"""
            INSERT OR REPLACE INTO {table} (user_id, payload, updated_at)
            VALUES (?, ?, ?)
        """, (user_id, json.dumps(payload), datetime.now(timezone.utc).isoformat()))

    def _load_settings(self, table, user_id):
        with self._lock:
            row = self.conn.execute(
                f"SELECT payload FROM {table} WHERE user_id = ?", (user_id,)
            ).fetchone()
        return json.loads(row["payload"]) if row else None

    def save_configuration(self, user_id, payload):
        self._save_settings("alert_configurations", user_id, payload)

    def load_configuration(self, user_id):
        return self._load_settings("alert_configurations", user_id)

    def save_preferences(self, user_id, payload):
        self._save_settings("notification_preferences", user_id, payload)

    def load_preferences(self, user_id):
        return self._load_settings("notification_preferences", user_id)

    def list_users(self):
        with self._lock:
            rows = self.conn.execute("""
                SELECT user_id FROM alert_configurations
                UNION SELECT user_id FROM notification_preferences
                UNION SELECT DISTINCT user_id FROM strategy_alerts
            """).fetchall()
        return sorted(r["user_id"] for r in rows)

    # --- Digest queue ---

    def enqueue_digest(self, user_id, alert, channel, bucket):
        cur = self._write("""
            INSERT INTO digest_queue (user_id, alert_id, channel, bucket, payload, queued_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (user_id, alert.id, channel, bucket, json.dumps(alert.to_dict()),
              datetime.now(timezone.utc).isoformat()))
        return cur.lastrowid

    def get_pending_digest(self, bucket, user_id=None):
        query = "SELECT * FROM digest_queue WHERE bucket = ? AND sent_at IS NULL"
        params = [bucket]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        query += " ORDER BY queued_at ASC, id ASC"
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [dict(r) for r in rows]

    def mark_digest_sent(self, entry_ids):
        if not entry_ids:
            return
        sent_at = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self.conn.executemany(
                "UPDATE digest_queue SET sent_at = ? WHERE id = ?",
                [(sent_at, i) for i in entry_ids],
            )
            self.conn.commit()
