"""
Database models: SQLite user store and synced user profiles.

Uses parameterized queries exclusively (? placeholders).

Failed-attempt and lockout state is NOT stored here; it lives in the
login security guard (bourbon_auth.guard).
"""

import os
import sqlite3
import time
from typing import Optional

from flask import current_app, g

DEMO_EMAIL = 'collector@bourbon.example'
DEMO_PASSWORD = 'SecureP@ss123!'


def get_db() -> sqlite3.Connection:
    """
    Get a database connection for the current request.

    Stored on g and closed by teardown_appcontext.
    """
    if 'db' not in g:
        db_path = os.path.join(
            current_app.instance_path,
            current_app.config['DATABASE_NAME'],
        )
        g.db = sqlite3.connect(db_path, check_same_thread=False)
        g.db.row_factory = sqlite3.Row
        g.db.execute('PRAGMA journal_mode=WAL')
    return g.db


def close_db(exception=None) -> None:
    """Close the database connection at the end of the request."""
    db = g.pop('db', None)
    if db is not None:
        db.close()


def init_db(app) -> None:
    """
    Initialize database tables and seed the demo user.

    CREATE TABLE IF NOT EXISTS keeps this idempotent across restarts.
    """
    from bourbon_auth.extensions import bcrypt

    db_path = os.path.join(app.instance_path, app.config['DATABASE_NAME'])
    conn = sqlite3.connect(db_path, check_same_thread=False)

    try:
        conn.execute('''
            CREATE TABLE IF NOT EXISTS users (
                id            INTEGER PRIMARY KEY AUTOINCREMENT,
                email         TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                created_at    TEXT NOT NULL DEFAULT (datetime('now'))
            )
        ''')

        # Profiles mirrored from the hosted auth provider on sign-in.
        conn.execute('''
            CREATE TABLE IF NOT EXISTS user_profiles (
                provider_id   TEXT PRIMARY KEY,
                email         TEXT NOT NULL,
                display_name  TEXT,
                synced_at     REAL NOT NULL
            )
        ''')

        conn.commit()

        cursor = conn.execute('SELECT COUNT(*) FROM users')
        if cursor.fetchone()[0] == 0:
            password_hash = bcrypt.generate_password_hash(DEMO_PASSWORD).decode('utf-8')
            conn.execute(
                'INSERT INTO users (email, password_hash) VALUES (?, ?)',
                (DEMO_EMAIL, password_hash),
            )
            conn.commit()
            app.logger.info('Demo user created: %s', DEMO_EMAIL)

    finally:
        conn.close()


def get_user_by_email(email: str) -> Optional[sqlite3.Row]:
    """Look up a user by normalized email address."""
    db = get_db()
    cursor = db.execute(
        'SELECT id, email, password_hash FROM users WHERE email = ?',
        (email,),
    )
    return cursor.fetchone()


# --- Synced Profiles ---

def upsert_user_profile(provider_id: str, email: str, display_name: Optional[str] = None) -> dict:
    """
    Insert or refresh the profile for a provider user.

    Idempotent: repeating the call only moves synced_at forward and
    updates email/display_name.
    """
    db = get_db()
    now = time.time()
    db.execute(
        '''INSERT INTO user_profiles (provider_id, email, display_name, synced_at)
           VALUES (?, ?, ?, ?)
           ON CONFLICT(provider_id) DO UPDATE SET
               email = excluded.email,
               display_name = COALESCE(excluded.display_name, user_profiles.display_name),
               synced_at = excluded.synced_at''',
        (provider_id, email, display_name, now),
    )
    db.commit()
    return dict(get_user_profile(provider_id))


def get_user_profile(provider_id: str) -> Optional[sqlite3.Row]:
    db = get_db()
    cursor = db.execute(
        'SELECT provider_id, email, display_name, synced_at FROM user_profiles WHERE provider_id = ?',
        (provider_id,),
    )
    return cursor.fetchone()
