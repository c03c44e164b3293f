"""
Database Manager Module - QR Attendance Session System

This module handles all database operations for the attendance system.
It manages SQLite connections, creates the schema for sections, students,
attendance records and student sessions, and provides query, update and transaction
helpers used by the session store.

Features:
- SQLite connection management (one connection per thread)
- Schema creation, including the one-active-session-per-day constraint
- Default section seeding
- Transaction support for multi-row writes
- System settings storage
"""

import sqlite3
import logging
from datetime import datetime
from contextlib import contextmanager
import threading
import os

IN_MEMORY = ':memory:'


class DatabaseManager:
    """
    SQLite database manager for the attendance session system.
    Handles connection management, schema creation and data manipulation
    with error logging and transaction support.
    """

    def __init__(self, db_path, default_sections=None, timeout=30.0):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file or ':memory:'
            default_sections (list): Section names to create on first run
            timeout (float): Seconds to wait on a locked database
        """
        self.db_path = str(db_path)
        self.timeout = timeout
        self.default_sections = list(default_sections or [])
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()

        # Ensure database directory exists
        directory = os.path.dirname(self.db_path)
        if self.db_path != IN_MEMORY and directory:
            os.makedirs(directory, exist_ok=True)

        self.initialize_database()

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Connections are thread-local and stay open for reuse within the thread.

        Yields:
            sqlite3.Connection: Database connection object
        """
        if not hasattr(self._local, 'connection'):
            self._local.connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=self.timeout
            )
            self._local.connection.row_factory = sqlite3.Row
            self._local.connection.execute("PRAGMA foreign_keys = ON")

        try:
            yield self._local.connection
        except sqlite3.IntegrityError:
            self._local.connection.rollback()
            raise
        except Exception as e:
            self._local.connection.rollback()
            self.logger.error(f"Database operation failed: {str(e)}")
            raise

    def initialize_database(self):
        """
        Create all tables and indexes used by the attendance system.
        Safe to call multiple times.
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS sections (
                        id TEXT PRIMARY KEY,
                        name TEXT UNIQUE NOT NULL,
                        created_at TIMESTAMP NOT NULL
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS students (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id TEXT UNIQUE NOT NULL,
                        full_name TEXT NOT NULL,
                        department TEXT NOT NULL,
                        section_id TEXT,
                        created_at TIMESTAMP NOT NULL,
                        updated_at TIMESTAMP NOT NULL
                    )
                """)

                # section_id is not a foreign key: deleting a section keeps its history
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS attendance_records (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id TEXT NOT NULL,
                        full_name TEXT NOT NULL,
                        department TEXT NOT NULL,
                        date TEXT NOT NULL,
                        time_in TIMESTAMP NOT NULL,
                        time_out TIMESTAMP,
                        section_id TEXT NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS student_sessions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id TEXT NOT NULL,
                        section_id TEXT NOT NULL,
                        date TEXT NOT NULL,
                        login_time TIMESTAMP NOT NULL,
                        logout_time TIMESTAMP,
                        cooldown_until TIMESTAMP,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS system_settings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        setting_key VARCHAR(100) UNIQUE NOT NULL,
                        setting_value TEXT,
                        description TEXT,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                # At most one open session per student, section and day
                cursor.execute("""
                    CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_one_active
                    ON student_sessions(student_id, section_id, date)
                    WHERE logout_time IS NULL
                """)
                cursor.execute("""
                    CREATE UNIQUE INDEX IF NOT EXISTS idx_attendance_one_per_day
                    ON attendance_records(student_id, section_id, date)
                """)
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_date ON attendance_records(date)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_lookup ON student_sessions(student_id, date)")

                conn.commit()

                self._insert_default_data(cursor)
                conn.commit()

                self.logger.info("Database initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

    def _insert_default_data(self, cursor):
        """
        Seed default sections and settings when the tables are empty.

        Args:
            cursor: Database cursor object
        """
        cursor.execute("SELECT COUNT(*) FROM sections")
        if cursor.fetchone()[0] == 0 and self.default_sections:
            created_at = datetime.now().isoformat()
            cursor.executemany(
                "INSERT INTO sections (id, name, created_at) VALUES (?, ?, ?)",
                [(make_section_id(name), name, created_at) for name in self.default_sections]
            )

        cursor.execute("SELECT COUNT(*) FROM system_settings")
        if cursor.fetchone()[0] == 0:
            default_settings = [
                ('system_name', 'QR Attendance', 'Name of the attendance system'),
            ]
            cursor.executemany("""
                INSERT INTO system_settings (setting_key, setting_value, description)
                VALUES (?, ?, ?)
            """, default_settings)

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())

                if fetch_all:
                    return [dict(row) for row in cursor.fetchall()]
                result = cursor.fetchone()
                return dict(result) if result else None

        except Exception as e:
            self.logger.error(f"Query execution failed: {str(e)}")
            raise

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, or DELETE query.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters

        Returns:
            int: Last inserted row ID for INSERT, otherwise affected rows
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())
                conn.commit()

                if query.strip().upper().startswith('INSERT'):
                    return cursor.lastrowid
                return cursor.rowcount

        except sqlite3.IntegrityError:
            raise
        except Exception as e:
            self.logger.error(f"Update execution failed: {str(e)}")
            raise

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions with automatic rollback on error.

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        with self.get_connection() as conn:
            try:
                yield conn
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                self.logger.debug(f"Transaction rolled back on constraint: {str(e)}")
                raise
            except Exception as e:
                conn.rollback()
                self.logger.error(f"Transaction rolled back: {str(e)}")
                raise

    def get_system_setting(self, key, default_value=None):
        """
        Get a system setting value by key.

        Args:
            key (str): Setting key
            default_value: Default value if setting not found

        Returns:
            str: Setting value
        """
        try:
            result = self.execute_query(
                "SELECT setting_value FROM system_settings WHERE setting_key = ?",
                (key,),
                fetch_all=False
            )
            return result['setting_value'] if result else default_value

        except sqlite3.Error as e:
            self.logger.error(f"Failed to get system setting {key}: {str(e)}")
            return default_value

    def update_system_setting(self, key, value, description=None):
        """
        Update or insert a system setting.

        Args:
            key (str): Setting key
            value (str): Setting value
            description (str): Setting description

        Returns:
            bool: Success status
        """
        try:
            with self.transaction() as conn:
                conn.execute("""
                    INSERT INTO system_settings (setting_key, setting_value, description)
                    VALUES (?, ?, ?)
                    ON CONFLICT(setting_key) DO UPDATE SET
                        setting_value = excluded.setting_value,
                        description = COALESCE(excluded.description, description),
                        updated_at = CURRENT_TIMESTAMP
                """, (key, str(value), description))
            return True

        except sqlite3.Error as e:
            self.logger.error(f"Failed to update system setting {key}: {str(e)}")
            return False

    def close_all_connections(self):
        """Close the current thread's connection."""
        if hasattr(self._local, 'connection'):
            self._local.connection.close()
            del self._local.connection


def make_section_id(name):
    """Derive a stable section id from its display name ("BSIT 3A" -> "bsit-3a")."""
    slug = '-'.join(name.lower().split())
    return slug or name
