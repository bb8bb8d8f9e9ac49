"""
Database Infrastructure for RakshaSetu

Provides SQLite database management, connection pooling, migrations,
transaction management, and the document store used by the SOS flow
(sosAlerts, liveLocations, users, threads) with real-time document
subscriptions.
"""

import sqlite3
import logging
import threading
import json
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass
from datetime import datetime

from core.interfaces import CallbackSubscription, DocumentCallback, DocumentStore, Subscription


@dataclass
class Migration:
    """Database migration definition"""
    version: int
    name: str
    sql: str
    rollback_sql: Optional[str] = None


class DatabaseError(Exception):
    """Database-related errors"""
    pass


class _ServerTimestamp:
    """Placeholder replaced with the write time by the store"""

    def __repr__(self):
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class ConnectionPool:
    """Simple SQLite connection pool"""

    def __init__(self, database_path: str, max_connections: int = 10):
        self.database_path = database_path
        self.max_connections = max_connections
        self.connections = []
        self.in_use = set()
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection from the pool"""
        with self.lock:
            for conn in self.connections:
                if conn not in self.in_use:
                    self.in_use.add(conn)
                    return conn

            if len(self.connections) < self.max_connections:
                conn = sqlite3.connect(
                    self.database_path,
                    check_same_thread=False,
                    timeout=30.0
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode = WAL")
                self.connections.append(conn)
                self.in_use.add(conn)
                return conn

            raise DatabaseError("Connection pool exhausted")

    def return_connection(self, conn: sqlite3.Connection):
        """Return a connection to the pool"""
        with self.lock:
            if conn in self.in_use:
                self.in_use.remove(conn)

    def close_all(self):
        """Close all connections in the pool"""
        with self.lock:
            for conn in self.connections:
                try:
                    conn.close()
                except Exception as e:
                    self.logger.warning(f"Error closing connection: {e}")
            self.connections.clear()
            self.in_use.clear()


class DatabaseManager:
    """
    Manages SQLite database operations, migrations, and connection pooling
    """

    def __init__(self, database_path: str, max_connections: int = 10):
        self.database_path = Path(database_path)
        self.logger = logging.getLogger(__name__)
        self.migrations = self._get_migrations()

        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.pool = ConnectionPool(str(self.database_path), max_connections)

        self._initialize_database()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections"""
        conn = None
        try:
            conn = self.pool.get_connection()
            yield conn
        except Exception:
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                self.pool.return_connection(conn)

    @contextmanager
    def transaction(self):
        """Context manager for database transactions"""
        with self.get_connection() as conn:
            try:
                conn.execute("BEGIN")
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def _initialize_database(self):
        """Initialize database with schema and migrations"""
        self.logger.info(f"Initializing database at {self.database_path}")

        with self.get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS migrations (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()

        self._run_migrations()

    def _get_migrations(self) -> List[Migration]:
        """Get all database migrations"""
        return [
            Migration(
                version=1,
                name="document_store",
                sql="""
                CREATE TABLE documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL, -- JSON object
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, id)
                );

                CREATE INDEX idx_documents_collection ON documents(collection);
                """,
                rollback_sql="DROP TABLE documents;"
            ),
        ]

    def _run_migrations(self):
        """Run pending database migrations"""
        with self.get_connection() as conn:
            cursor = conn.execute("SELECT MAX(version) FROM migrations")
            result = cursor.fetchone()
            current_version = result[0] if result[0] is not None else 0

            for migration in self.migrations:
                if migration.version > current_version:
                    self.logger.info(f"Running migration {migration.version}: {migration.name}")

                    try:
                        conn.executescript(migration.sql)
                        conn.execute(
                            "INSERT INTO migrations (version, name) VALUES (?, ?)",
                            (migration.version, migration.name)
                        )
                        conn.commit()
                        self.logger.info(f"Migration {migration.version} completed successfully")

                    except Exception as e:
                        conn.rollback()
                        self.logger.error(f"Migration {migration.version} failed: {e}")
                        raise DatabaseError(f"Migration failed: {e}")

    def execute_query(self, query: str, params: Tuple = ()) -> List[sqlite3.Row]:
        """Execute a SELECT query and return results"""
        try:
            with self.get_connection() as conn:
                cursor = conn.execute(query, params)
                return cursor.fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(f"Query failed: {e}")

    def execute_update(self, query: str, params: Tuple = ()) -> int:
        """Execute an INSERT/UPDATE/DELETE query and return affected rows"""
        try:
            with self.transaction() as conn:
                cursor = conn.execute(query, params)
                return cursor.rowcount
        except sqlite3.Error as e:
            raise DatabaseError(f"Update failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Get document counts per collection"""
        rows = self.execute_query(
            "SELECT collection, COUNT(*) AS total FROM documents GROUP BY collection"
        )
        stats = {row['collection']: row['total'] for row in rows}

        if self.database_path.exists():
            stats['database_size_bytes'] = self.database_path.stat().st_size
        else:
            stats['database_size_bytes'] = 0

        return stats

    def close(self):
        """Close all database connections"""
        self.pool.close_all()


class SQLiteDocumentStore(DocumentStore):
    """
    Document store backed by the ``documents`` table.

    Documents are JSON objects; datetimes are stored as ISO strings and
    SERVER_TIMESTAMP values are replaced with the write time. Subscribers
    are notified synchronously after each committed change.
    """

    def __init__(self, db: DatabaseManager):
        self.db = db
        self.logger = logging.getLogger(__name__)
        self._listeners: Dict[Tuple[str, str], List[DocumentCallback]] = {}

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        payload = self._encode(data)
        now = datetime.utcnow().isoformat()
        self.db.execute_update(
            """
            INSERT INTO documents (collection, id, data, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(collection, id) DO UPDATE SET
                data = excluded.data, updated_at = excluded.updated_at
            """,
            (collection, doc_id, payload, now, now)
        )
        self._notify(collection, doc_id)

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        await self.set(collection, doc_id, data)
        return doc_id

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return self._read(collection, doc_id)

    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        current = self._read(collection, doc_id)
        if current is None:
            raise DatabaseError(f"No document to update: {collection}/{doc_id}")

        current.update(fields)
        rows = self.db.execute_update(
            "UPDATE documents SET data = ?, updated_at = ? WHERE collection = ? AND id = ?",
            (self._encode(current), datetime.utcnow().isoformat(), collection, doc_id)
        )
        if rows == 0:
            raise DatabaseError(f"No document to update: {collection}/{doc_id}")
        self._notify(collection, doc_id)

    async def delete(self, collection: str, doc_id: str) -> None:
        rows = self.db.execute_update(
            "DELETE FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id)
        )
        if rows:
            self._notify(collection, doc_id)

    async def query(self, collection: str, field: str, op: str, value: Any) -> List[Dict[str, Any]]:
        if op not in ('==', 'array-contains'):
            raise DatabaseError(f"Unsupported query operator: {op}")

        rows = self.db.execute_query(
            "SELECT id, data FROM documents WHERE collection = ? ORDER BY created_at",
            (collection,)
        )

        results = []
        for row in rows:
            data = json.loads(row['data'])
            candidate = data.get(field)
            if op == '==' and candidate == value:
                matched = True
            elif op == 'array-contains' and isinstance(candidate, list) and value in candidate:
                matched = True
            else:
                matched = False

            if matched:
                data['id'] = row['id']
                results.append(data)

        return results

    def subscribe(self, collection: str, doc_id: str, callback: DocumentCallback) -> Subscription:
        key = (collection, doc_id)
        self._listeners.setdefault(key, []).append(callback)

        def _remove():
            listeners = self._listeners.get(key, [])
            if callback in listeners:
                listeners.remove(callback)
            if not listeners:
                self._listeners.pop(key, None)

        subscription = CallbackSubscription(_remove)
        self._deliver(callback, self._read(collection, doc_id))
        return subscription

    def listener_count(self, collection: str, doc_id: str) -> int:
        return len(self._listeners.get((collection, doc_id), []))

    def _read(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        rows = self.db.execute_query(
            "SELECT data FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id)
        )
        if not rows:
            return None
        return json.loads(rows[0]['data'])

    def _notify(self, collection: str, doc_id: str):
        listeners = list(self._listeners.get((collection, doc_id), []))
        if not listeners:
            return

        snapshot = self._read(collection, doc_id)
        for callback in listeners:
            self._deliver(callback, snapshot)

    def _deliver(self, callback: DocumentCallback, snapshot: Optional[Dict[str, Any]]):
        try:
            callback(dict(snapshot) if snapshot is not None else None)
        except Exception as e:
            self.logger.error(f"Error in document listener: {e}")

    def _encode(self, data: Dict[str, Any]) -> str:
        now = datetime.utcnow().isoformat()

        def _resolve(value):
            if value is SERVER_TIMESTAMP:
                return now
            if isinstance(value, datetime):
                return value.isoformat()
            if isinstance(value, dict):
                return {k: _resolve(v) for k, v in value.items()}
            if isinstance(value, (list, tuple)):
                return [_resolve(v) for v in value]
            return value

        try:
            return json.dumps(_resolve(data))
        except (TypeError, ValueError) as e:
            raise DatabaseError(f"Document is not serializable: {e}")


# Global database manager instance (will be initialized by the application)
db_manager: Optional[DatabaseManager] = None


def initialize_database(database_path: str, max_connections: int = 10) -> DatabaseManager:
    """Initialize the global database manager"""
    global db_manager
    db_manager = DatabaseManager(database_path, max_connections)
    return db_manager


def get_database() -> DatabaseManager:
    """Get the global database manager instance"""
    if db_manager is None:
        raise DatabaseError("Database not initialized. Call initialize_database() first.")
    return db_manager
