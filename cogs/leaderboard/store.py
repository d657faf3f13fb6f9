"""
Leaderboard Storage
===================
SQLite persistence for per-user activity counters and per-guild leaderboard
configurations. A single aiosqlite connection is shared by both stores.
"""

import logging
import os
from dataclasses import dataclass, replace
from typing import List, Optional

import aiosqlite

from .leaderboard_config import LeaderboardKind

logger = logging.getLogger('discord.bot.leaderboard.store')
logging.getLogger('aiosqlite').setLevel(logging.ERROR)


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        guild_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        username TEXT,
        messages INTEGER NOT NULL DEFAULT 0,
        voice_seconds INTEGER NOT NULL DEFAULT 0,
        voice_join INTEGER DEFAULT NULL,
        PRIMARY KEY (guild_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS leaderboards (
        guild_id INTEGER NOT NULL,
        kind TEXT NOT NULL,
        channel_id INTEGER NOT NULL,
        message_id INTEGER,
        timer_message_id INTEGER,
        start_at INTEGER,
        end_at INTEGER,
        winners_text TEXT,
        active INTEGER NOT NULL DEFAULT 1,
        PRIMARY KEY (guild_id, kind)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_users_messages ON users(guild_id, messages DESC)",
    "CREATE INDEX IF NOT EXISTS idx_users_voice ON users(guild_id, voice_seconds DESC)",
)

# Columns added after the first release; older databases get them on connect.
LEADERBOARD_MIGRATIONS = {
    'timer_message_id': "ALTER TABLE leaderboards ADD COLUMN timer_message_id INTEGER",
    'winners_text': "ALTER TABLE leaderboards ADD COLUMN winners_text TEXT",
}


@dataclass
class UserActivity:
    guild_id: int
    user_id: int
    username: Optional[str] = None
    messages: int = 0
    voice_seconds: int = 0
    voice_join: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> "UserActivity":
        return cls(
            guild_id=row['guild_id'],
            user_id=row['user_id'],
            username=row['username'],
            messages=row['messages'] or 0,
            voice_seconds=row['voice_seconds'] or 0,
            voice_join=row['voice_join'],
        )


@dataclass
class LeaderboardConfig:
    guild_id: int
    kind: LeaderboardKind
    channel_id: int
    message_id: Optional[int] = None
    timer_message_id: Optional[int] = None
    start_at: Optional[int] = None
    end_at: Optional[int] = None
    winners_text: Optional[str] = None
    active: bool = True

    @classmethod
    def from_row(cls, row) -> "LeaderboardConfig":
        return cls(
            guild_id=row['guild_id'],
            kind=LeaderboardKind.parse(row['kind']),
            channel_id=row['channel_id'],
            message_id=row['message_id'],
            timer_message_id=row['timer_message_id'],
            start_at=row['start_at'],
            end_at=row['end_at'],
            winners_text=row['winners_text'],
            active=bool(row['active']),
        )

    @property
    def has_cycle(self) -> bool:
        return self.start_at is not None and self.end_at is not None

    def is_expired(self, now_ms: int) -> bool:
        return self.end_at is not None and now_ms >= self.end_at

    def with_changes(self, **changes) -> "LeaderboardConfig":
        return replace(self, **changes)


class LeaderboardDatabase:
    """Owns the aiosqlite connection and the schema."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.db: Optional[aiosqlite.Connection] = None

    @property
    def connected(self) -> bool:
        return self.db is not None

    async def connect(self) -> aiosqlite.Connection:
        if self.db is not None:
            return self.db

        directory = os.path.dirname(self.db_path)
        if directory and self.db_path != ':memory:':
            os.makedirs(directory, exist_ok=True)

        self.db = await aiosqlite.connect(self.db_path, timeout=5.0)
        self.db.row_factory = aiosqlite.Row
        if self.db_path != ':memory:':
            await self.db.execute('PRAGMA journal_mode=WAL')
        for statement in SCHEMA:
            await self.db.execute(statement)
        await self._migrate()
        await self.db.commit()
        logger.info(f"Leaderboard database ready at {self.db_path}")
        return self.db

    async def _migrate(self):
        async with self.db.execute("PRAGMA table_info(leaderboards)") as cursor:
            columns = {row[1] for row in await cursor.fetchall()}
        for column, statement in LEADERBOARD_MIGRATIONS.items():
            if column not in columns:
                await self.db.execute(statement)
                logger.info(f"Migrated leaderboards table: added column {column}")

    async def close(self):
        if self.db is not None:
            await self.db.close()
            self.db = None

    def connection(self) -> aiosqlite.Connection:
        if self.db is None:
            raise RuntimeError("Leaderboard database is not connected")
        return self.db


class ActivityStore:
    """Durable per-(guild, user) message and voice counters."""

    def __init__(self, database: LeaderboardDatabase):
        self.database = database

    async def touch_user(self, guild_id: int, user_id: int, username: Optional[str]):
        db = self.database.connection()
        await db.execute(
            """
            INSERT INTO users (guild_id, user_id, username) VALUES (?, ?, ?)
            ON CONFLICT(guild_id, user_id) DO UPDATE SET
                username = COALESCE(excluded.username, users.username)
            """,
            (guild_id, user_id, username),
        )
        await db.commit()

    async def record_message(self, guild_id: int, user_id: int, username: Optional[str]):
        db = self.database.connection()
        await db.execute(
            """
            INSERT INTO users (guild_id, user_id, username, messages) VALUES (?, ?, ?, 1)
            ON CONFLICT(guild_id, user_id) DO UPDATE SET
                username = COALESCE(excluded.username, users.username),
                messages = users.messages + 1
            """,
            (guild_id, user_id, username),
        )
        await db.commit()

    async def get_user(self, guild_id: int, user_id: int) -> Optional[UserActivity]:
        db = self.database.connection()
        async with db.execute(
            "SELECT * FROM users WHERE guild_id = ? AND user_id = ?",
            (guild_id, user_id),
        ) as cursor:
            row = await cursor.fetchone()
        return UserActivity.from_row(row) if row else None

    async def set_voice_join(self, guild_id: int, user_id: int, voice_join: Optional[int]):
        db = self.database.connection()
        await db.execute(
            """
            INSERT INTO users (guild_id, user_id, voice_join) VALUES (?, ?, ?)
            ON CONFLICT(guild_id, user_id) DO UPDATE SET voice_join = excluded.voice_join
            """,
            (guild_id, user_id, voice_join),
        )
        await db.commit()

    async def add_voice_seconds(self, guild_id: int, user_id: int, seconds: int,
                                voice_join: Optional[int]):
        """Add closed-session seconds and write the new session marker in one statement."""
        if seconds < 0:
            logger.warning(f"Negative voice increment {seconds}s for user {user_id} in guild {guild_id}, clamping to 0")
            seconds = 0
        db = self.database.connection()
        await db.execute(
            """
            INSERT INTO users (guild_id, user_id, voice_seconds, voice_join) VALUES (?, ?, ?, ?)
            ON CONFLICT(guild_id, user_id) DO UPDATE SET
                voice_seconds = users.voice_seconds + excluded.voice_seconds,
                voice_join = excluded.voice_join
            """,
            (guild_id, user_id, seconds, voice_join),
        )
        await db.commit()

    async def top_users(self, guild_id: int, kind: LeaderboardKind, limit: int) -> List[UserActivity]:
        """Candidates ordered by the durable metric, ties by user id."""
        if kind == LeaderboardKind.MESSAGE:
            query = (
                "SELECT * FROM users WHERE guild_id = ? AND messages > 0 "
                "ORDER BY messages DESC, user_id ASC LIMIT ?"
            )
        else:
            query = (
                "SELECT * FROM users WHERE guild_id = ? "
                "AND (voice_seconds > 0 OR voice_join IS NOT NULL) "
                "ORDER BY voice_seconds DESC, user_id ASC LIMIT ?"
            )
        db = self.database.connection()
        async with db.execute(query, (guild_id, limit)) as cursor:
            rows = await cursor.fetchall()
        return [UserActivity.from_row(row) for row in rows]

    async def open_voice_users(self) -> List[UserActivity]:
        db = self.database.connection()
        async with db.execute("SELECT * FROM users WHERE voice_join IS NOT NULL") as cursor:
            rows = await cursor.fetchall()
        return [UserActivity.from_row(row) for row in rows]

    async def reset_messages(self, guild_id: int) -> int:
        db = self.database.connection()
        cursor = await db.execute("UPDATE users SET messages = 0 WHERE guild_id = ?", (guild_id,))
        await db.commit()
        logger.info(f"Reset message counts for guild {guild_id} ({cursor.rowcount} rows)")
        return cursor.rowcount

    async def reset_voice(self, guild_id: int) -> int:
        db = self.database.connection()
        cursor = await db.execute(
            "UPDATE users SET voice_seconds = 0, voice_join = NULL WHERE guild_id = ?",
            (guild_id,),
        )
        await db.commit()
        logger.info(f"Reset voice time for guild {guild_id} ({cursor.rowcount} rows)")
        return cursor.rowcount

    async def reset(self, guild_id: int, kind: LeaderboardKind) -> int:
        if kind == LeaderboardKind.MESSAGE:
            return await self.reset_messages(guild_id)
        return await self.reset_voice(guild_id)


class LeaderboardConfigStore:
    """Durable per-(guild, kind) leaderboard configuration."""

    def __init__(self, database: LeaderboardDatabase):
        self.database = database

    async def get(self, guild_id: int, kind: LeaderboardKind) -> Optional[LeaderboardConfig]:
        db = self.database.connection()
        async with db.execute(
            "SELECT * FROM leaderboards WHERE guild_id = ? AND kind = ?",
            (guild_id, kind.value),
        ) as cursor:
            row = await cursor.fetchone()
        return LeaderboardConfig.from_row(row) if row else None

    async def all_active(self) -> List[LeaderboardConfig]:
        db = self.database.connection()
        async with db.execute("SELECT * FROM leaderboards WHERE active = 1") as cursor:
            rows = await cursor.fetchall()
        return [LeaderboardConfig.from_row(row) for row in rows]

    async def upsert(self, config: LeaderboardConfig):
        db = self.database.connection()
        await db.execute(
            """
            INSERT INTO leaderboards (guild_id, kind, channel_id, message_id, timer_message_id,
                                      start_at, end_at, winners_text, active)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(guild_id, kind) DO UPDATE SET
                channel_id = excluded.channel_id,
                message_id = excluded.message_id,
                timer_message_id = excluded.timer_message_id,
                start_at = excluded.start_at,
                end_at = excluded.end_at,
                winners_text = excluded.winners_text,
                active = excluded.active
            """,
            (
                config.guild_id, config.kind.value, config.channel_id, config.message_id,
                config.timer_message_id, config.start_at, config.end_at,
                config.winners_text, 1 if config.active else 0,
            ),
        )
        await db.commit()

    async def _update_field(self, guild_id: int, kind: LeaderboardKind, column: str, value):
        db = self.database.connection()
        await db.execute(
            f"UPDATE leaderboards SET {column} = ? WHERE guild_id = ? AND kind = ?",
            (value, guild_id, kind.value),
        )
        await db.commit()

    async def set_message_id(self, guild_id: int, kind: LeaderboardKind, message_id: Optional[int]):
        await self._update_field(guild_id, kind, 'message_id', message_id)

    async def set_timer_message_id(self, guild_id: int, kind: LeaderboardKind, message_id: Optional[int]):
        await self._update_field(guild_id, kind, 'timer_message_id', message_id)

    async def set_winners_text(self, guild_id: int, kind: LeaderboardKind, winners_text: Optional[str]):
        await self._update_field(guild_id, kind, 'winners_text', winners_text)

    async def set_active(self, guild_id: int, kind: LeaderboardKind, active: bool):
        await self._update_field(guild_id, kind, 'active', 1 if active else 0)

    async def deactivate_guild(self, guild_id: int) -> int:
        db = self.database.connection()
        cursor = await db.execute("UPDATE leaderboards SET active = 0 WHERE guild_id = ?", (guild_id,))
        await db.commit()
        return cursor.rowcount
