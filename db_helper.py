#!/usr/bin/env python3
"""
Database helper module for stats.db SQLite database operations.
Holds account links, snapshots of osu! users, the API response cache and
command usage counters.
"""

import json
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from bot_config import DB_FILE


@contextmanager
def get_db_connection(db_path: Optional[Path] = None):
    """Context manager for database connections with automatic cleanup.

    Args:
        db_path: Optional custom path to database file

    Yields:
        sqlite3.Connection: Database connection object
    """
    conn = sqlite3.connect(str(db_path or DB_FILE))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_database(db_path: Optional[Path] = None):
    """Create all tables if they don't exist yet.

    Args:
        db_path: Optional custom path to database file
    """
    with get_db_connection(db_path) as conn:
        cursor = conn.cursor()

        # Discord account -> osu! account
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS user_links (
                discord_id TEXT PRIMARY KEY,
                osu_id INTEGER NOT NULL,
                username TEXT NOT NULL
            )
        ''')

        # Last known stats of osu! users, used for server leaderboards
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS osu_users (
                user_id INTEGER PRIMARY KEY,
                username TEXT NOT NULL,
                country_code TEXT DEFAULT '',
                pp REAL DEFAULT 0,
                global_rank INTEGER DEFAULT NULL,
                accuracy REAL DEFAULT 0,
                playcount INTEGER DEFAULT 0,
                medal_count INTEGER DEFAULT 0,
                updated_at INTEGER DEFAULT (strftime('%s', 'now'))
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS cache (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL,
                stored_at REAL NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS command_counts (
                name TEXT PRIMARY KEY,
                count INTEGER DEFAULT 0
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_link_osu_id ON user_links(osu_id)')

        conn.commit()


# ============================================================================
# User Links Functions (Discord ID <-> osu! account)
# ============================================================================

def get_user_link(discord_id) -> Optional[Dict]:
    """Get the osu! account linked to a Discord user.

    Returns:
        Dict with 'osu_id' and 'username' or None if not linked
    """
    with get_db_connection() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT osu_id, username FROM user_links WHERE discord_id = ?', (str(discord_id),))
        row = cursor.fetchone()
        return {'osu_id': row['osu_id'], 'username': row['username']} if row else None


def set_user_link(discord_id, osu_id: int, username: str):
    with get_db_connection() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            INSERT INTO user_links (discord_id, osu_id, username)
            VALUES (?, ?, ?)
            ON CONFLICT(discord_id) DO UPDATE SET osu_id = excluded.osu_id, username = excluded.username
        ''', (str(discord_id), osu_id, username))
        conn.commit()


def remove_user_link(discord_id) -> bool:
    """Unlink a Discord user.

    Returns:
        True if a link existed
    """
    with get_db_connection() as conn:
        cursor = conn.cursor()
        cursor.execute('DELETE FROM user_links WHERE discord_id = ?', (str(discord_id),))
        conn.commit()
        return cursor.rowcount > 0


def get_all_user_links() -> Dict[str, Dict]:
    with get_db_connection() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT discord_id, osu_id, username FROM user_links')
        return {
            row['discord_id']: {'osu_id': row['osu_id'], 'username': row['username']}
            for row in cursor.fetchall()
        }


# ============================================================================
# osu! user snapshots
# ============================================================================

def save_osu_user(user):
    """Store the latest stats of an osu! user.

    Args:
        user: OsuUser as returned by the osu! client
    """
    with get_db_connection() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            INSERT OR REPLACE INTO osu_users
            (user_id, username, country_code, pp, global_rank, accuracy, playcount, medal_count, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (user.user_id, user.username, user.country_code, user.pp, user.global_rank,
              user.accuracy, user.playcount, len(user.medals), int(time.time())))
        conn.commit()


def get_osu_users(user_ids: Iterable[int]) -> List[Dict]:
    """Get stored snapshots for the given osu! user ids.

    Unknown ids are skipped.
    """
    ids = [int(user_id) for user_id in user_ids]
    if not ids:
        return []

    with get_db_connection() as conn:
        cursor = conn.cursor()
        placeholders = ','.join('?' for _ in ids)
        cursor.execute(f'''
            SELECT user_id, username, country_code, pp, global_rank, accuracy, playcount, medal_count, updated_at
            FROM osu_users
            WHERE user_id IN ({placeholders})
        ''', ids)
        return [dict(row) for row in cursor.fetchall()]


# ============================================================================
# API response cache
# ============================================================================

def get_cached(key: str, max_age: Optional[float] = None) -> Optional[bytes]:
    """Get a cached value.

    Args:
        key: Cache key
        max_age: Maximum age in seconds, None accepts any age

    Returns:
        Stored bytes or None if missing or too old
    """
    with get_db_connection() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT value, stored_at FROM cache WHERE key = ?', (key,))
        row = cursor.fetchone()
        if not row:
            return None
        if max_age is not None and time.time() - row['stored_at'] > max_age:
            return None
        return bytes(row['value'])


def set_cached(key: str, value: bytes):
    with get_db_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(
            'INSERT OR REPLACE INTO cache (key, value, stored_at) VALUES (?, ?, ?)',
            (key, sqlite3.Binary(value), time.time()),
        )
        conn.commit()


def get_cached_json(key: str, max_age: Optional[float] = None):
    raw = get_cached(key, max_age)
    if raw is None:
        return None
    try:
        return json.loads(raw.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        print(f"[CACHE] Dropping corrupt entry '{key}': {e}")
        return None


def set_cached_json(key: str, value):
    set_cached(key, json.dumps(value).encode('utf-8'))


def clear_cache(prefix: Optional[str] = None) -> int:
    """Delete cached values, optionally only keys starting with prefix.

    Returns:
        Number of deleted entries
    """
    with get_db_connection() as conn:
        cursor = conn.cursor()
        if prefix:
            cursor.execute('DELETE FROM cache WHERE key LIKE ?', (prefix + '%',))
        else:
            cursor.execute('DELETE FROM cache')
        conn.commit()
        return cursor.rowcount


# ============================================================================
# Command usage
# ============================================================================

def increment_command_count(name: str):
    with get_db_connection() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            INSERT INTO command_counts (name, count) VALUES (?, 1)
            ON CONFLICT(name) DO UPDATE SET count = count + 1
        ''', (name,))
        conn.commit()


def get_command_counts() -> List[Tuple[str, int]]:
    """Get all command usage counters, most used first."""
    with get_db_connection() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT name, count FROM command_counts ORDER BY count DESC, name ASC')
        return [(row['name'], row['count']) for row in cursor.fetchall()]


def get_database_stats() -> Dict:
    with get_db_connection() as conn:
        cursor = conn.cursor()

        cursor.execute('SELECT COUNT(*) FROM user_links')
        links = cursor.fetchone()[0]

        cursor.execute('SELECT COUNT(*) FROM osu_users')
        users = cursor.fetchone()[0]

        cursor.execute('SELECT COUNT(*) FROM cache')
        cached = cursor.fetchone()[0]

        return {
            'links': links,
            'osu_users': users,
            'cache_entries': cached,
            'db_file': str(DB_FILE),
        }
