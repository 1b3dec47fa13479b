"""
GoalGrid Engine — SQLite stores.

Users, goals and check-ins, the point ledger, and groups with their
challenges all live in one SQLite file. Each store owns a slice of the
schema; all of them share `transaction()` so a service can run a check-in,
its ledger row and the user's totals as a single atomic unit.

Every read/write method accepts an optional `conn`. Without one the call
runs in its own short-lived connection; with one it joins the caller's
transaction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from goalgrid.core.time_keys import day_key, get_zone, week_key
from goalgrid.data.models import (
    Cadence,
    ChallengeMode,
    ChallengeStatus,
    CheckIn,
    Goal,
    Group,
    GroupChallenge,
    GroupMember,
    LedgerReason,
    MemberRole,
    PointLedgerEntry,
    TeamAssignments,
    User,
    UserPoints,
)

logger = logging.getLogger(__name__)


def _to_text(instant: datetime) -> str:
    """Serialize an instant as ISO-8601 UTC; naive values are taken as UTC."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant.astimezone(UTC).isoformat(timespec="microseconds")


def _from_text(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class _SQLiteStore:
    """Connection handling shared by every store."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from goalgrid.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError

    @contextmanager
    def _session(self, conn: sqlite3.Connection | None = None) -> Iterator[sqlite3.Connection]:
        """Reuse the caller's connection, or open (and close) a fresh one."""
        if conn is not None:
            yield conn
            return
        own = self._connect()
        try:
            with own:
                yield own
        finally:
            own.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction taken with BEGIN IMMEDIATE.

        The write lock is held from the first statement, so read-then-write
        sequences inside the block (count approvals, sum the week's ledger)
        cannot interleave with another writer.
        """
        conn = sqlite3.connect(self._db_path, isolation_level=None, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")
        finally:
            conn.close()


class UserDB(_SQLiteStore):
    """Users plus their cached point totals."""

    def _init_db(self) -> None:
        with self._session() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
                    display_name          TEXT    NOT NULL,
                    timezone              TEXT    NOT NULL,
                    points_week_key       TEXT,
                    points_week_milli     INTEGER NOT NULL DEFAULT 0,
                    points_lifetime_milli INTEGER NOT NULL DEFAULT 0,
                    created_at            TEXT    NOT NULL
                )
            """)
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            display_name=row["display_name"],
            timezone=row["timezone"],
            points_week_key=row["points_week_key"],
            points_week_milli=row["points_week_milli"],
            points_lifetime_milli=row["points_lifetime_milli"],
            created_at=_from_text(row["created_at"]),
        )

    def add_user(
        self,
        display_name: str,
        timezone: str | None = None,
        created_at: datetime | None = None,
    ) -> User:
        """Register a user. Raises ValueError for an unknown timezone."""
        if timezone is None:
            from goalgrid.config import settings
            timezone = settings.DEFAULT_TIMEZONE
        get_zone(timezone)
        created_at = created_at or datetime.now(UTC)

        with self._session() as conn:
            cursor = conn.execute(
                "INSERT INTO users (display_name, timezone, created_at) VALUES (?, ?, ?)",
                (display_name, timezone, _to_text(created_at)),
            )
            user_id = cursor.lastrowid

        logger.info("User registered: #%d '%s' (%s)", user_id, display_name, timezone)
        return User(id=user_id, display_name=display_name, timezone=timezone, created_at=created_at)

    def get_user(self, user_id: int, conn: sqlite3.Connection | None = None) -> User | None:
        with self._session(conn) as c:
            row = c.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> list[User]:
        with self._session() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_user(r) for r in rows]

    def set_timezone(self, user_id: int, timezone: str) -> None:
        get_zone(timezone)
        with self._session() as conn:
            cursor = conn.execute(
                "UPDATE users SET timezone = ? WHERE id = ?", (timezone, user_id),
            )
        if cursor.rowcount == 0:
            raise ValueError(f"User {user_id} not found")
        logger.info("Timezone for user %d set to %s", user_id, timezone)

    def get_points(self, user_id: int, conn: sqlite3.Connection | None = None) -> UserPoints:
        user = self.get_user(user_id, conn)
        if user is None:
            raise ValueError(f"User {user_id} not found")
        return UserPoints(
            week_key=user.points_week_key,
            week_milli=user.points_week_milli,
            lifetime_milli=user.points_lifetime_milli,
        )

    def set_points(
        self, user_id: int, points: UserPoints, conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._session(conn) as c:
            c.execute(
                """
                UPDATE users
                   SET points_week_key = ?, points_week_milli = ?, points_lifetime_milli = ?
                 WHERE id = ?
                """,
                (points.week_key, points.week_milli, points.lifetime_milli, user_id),
            )
        logger.debug(
            "User %d totals: week %s=%d milli, lifetime=%d milli",
            user_id, points.week_key, points.week_milli, points.lifetime_milli,
        )


class GoalDB(_SQLiteStore):
    """Goals and their check-ins."""

    def _init_db(self) -> None:
        with self._session() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS goals (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id       INTEGER NOT NULL,
                    name           TEXT    NOT NULL,
                    cadence        TEXT    NOT NULL,
                    daily_target   INTEGER NOT NULL DEFAULT 1,
                    weekly_target  INTEGER,
                    active         INTEGER NOT NULL DEFAULT 1,
                    group_id       INTEGER,
                    created_at     TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS check_ins (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    goal_id         INTEGER NOT NULL,
                    user_id         INTEGER NOT NULL,
                    timestamp       TEXT    NOT NULL,
                    local_date_key  TEXT    NOT NULL,
                    week_key        TEXT    NOT NULL,
                    is_partial      INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_check_ins_goal_day "
                "ON check_ins (goal_id, local_date_key)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_check_ins_user_week "
                "ON check_ins (user_id, week_key)"
            )
            # Migrate existing DBs: add new columns if missing
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(goals)").fetchall()
            }
            if "streak_freezes" not in existing_cols:
                conn.execute(
                    "ALTER TABLE goals ADD COLUMN streak_freezes INTEGER NOT NULL DEFAULT 1"
                )
        logger.debug("Goals tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_goal(row: sqlite3.Row) -> Goal:
        return Goal(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            cadence=Cadence(row["cadence"]),
            created_at=_from_text(row["created_at"]),
            daily_target=row["daily_target"],
            weekly_target=row["weekly_target"],
            active=bool(row["active"]),
            streak_freezes=row["streak_freezes"],
            group_id=row["group_id"],
        )

    @staticmethod
    def _row_to_check_in(row: sqlite3.Row) -> CheckIn:
        return CheckIn(
            id=row["id"],
            goal_id=row["goal_id"],
            user_id=row["user_id"],
            timestamp=_from_text(row["timestamp"]),
            local_date_key=row["local_date_key"],
            week_key=row["week_key"],
            is_partial=bool(row["is_partial"]),
        )

    # --- goals ---

    def add_goal(
        self,
        owner_id: int,
        name: str,
        cadence: Cadence | str,
        created_at: datetime | None = None,
        daily_target: int = 1,
        weekly_target: int | None = None,
        streak_freezes: int = 1,
        group_id: int | None = None,
    ) -> Goal:
        """Create a goal.

        Raises ValueError when the targets do not fit the cadence: a WEEKLY
        goal needs a weekly target of at least 1, a DAILY goal must not have
        one.
        """
        cadence = Cadence(cadence)
        if daily_target < 1:
            raise ValueError(f"daily_target must be >= 1, got {daily_target}")
        if cadence == Cadence.WEEKLY and (weekly_target is None or weekly_target < 1):
            raise ValueError("A WEEKLY goal needs a weekly_target of at least 1")
        if cadence == Cadence.DAILY and weekly_target is not None:
            raise ValueError("A DAILY goal cannot have a weekly_target")
        if streak_freezes < 0:
            raise ValueError(f"streak_freezes must be >= 0, got {streak_freezes}")
        created_at = created_at or datetime.now(UTC)

        with self._session() as conn:
            cursor = conn.execute(
                """
                INSERT INTO goals
                    (owner_id, name, cadence, daily_target, weekly_target,
                     active, streak_freezes, group_id, created_at)
                VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?)
                """,
                (
                    owner_id, name, cadence.value, daily_target, weekly_target,
                    streak_freezes, group_id, _to_text(created_at),
                ),
            )
            goal_id = cursor.lastrowid

        logger.info("Goal added: #%d '%s' (%s) for user %d", goal_id, name, cadence.value, owner_id)
        return Goal(
            id=goal_id,
            owner_id=owner_id,
            name=name,
            cadence=cadence,
            created_at=created_at,
            daily_target=daily_target,
            weekly_target=weekly_target,
            streak_freezes=streak_freezes,
            group_id=group_id,
        )

    def get_goal(self, goal_id: int, conn: sqlite3.Connection | None = None) -> Goal | None:
        with self._session(conn) as c:
            row = c.execute("SELECT * FROM goals WHERE id = ?", (goal_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_goal(row)

    def list_goals(
        self,
        owner_id: int,
        active_only: bool = False,
        conn: sqlite3.Connection | None = None,
    ) -> list[Goal]:
        query = "SELECT * FROM goals WHERE owner_id = ?"
        if active_only:
            query += " AND active = 1"
        query += " ORDER BY id"
        with self._session(conn) as c:
            rows = c.execute(query, (owner_id,)).fetchall()
        return [self._row_to_goal(r) for r in rows]

    def archive_goal(self, goal_id: int) -> bool:
        """Soft-delete a goal (set active = False); its history is kept."""
        with self._session() as conn:
            cursor = conn.execute(
                "UPDATE goals SET active = 0 WHERE id = ? AND active = 1", (goal_id,),
            )
        archived = cursor.rowcount > 0
        if archived:
            logger.info("Goal #%d archived", goal_id)
        return archived

    def delete_goal(self, goal_id: int) -> bool:
        """Hard-delete a goal together with its check-ins.

        Ledger rows are left alone: points already earned stay earned.
        """
        with self.transaction() as conn:
            conn.execute("DELETE FROM check_ins WHERE goal_id = ?", (goal_id,))
            cursor = conn.execute("DELETE FROM goals WHERE id = ?", (goal_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Goal #%d deleted with its check-ins", goal_id)
        return deleted

    # --- check-ins ---

    def add_check_in(
        self,
        goal_id: int,
        user_id: int,
        timestamp: datetime,
        local_date_key: str,
        week_key: str,
        is_partial: bool = False,
        conn: sqlite3.Connection | None = None,
    ) -> CheckIn:
        with self._session(conn) as c:
            cursor = c.execute(
                """
                INSERT INTO check_ins
                    (goal_id, user_id, timestamp, local_date_key, week_key, is_partial)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (goal_id, user_id, _to_text(timestamp), local_date_key, week_key, int(is_partial)),
            )
            check_in_id = cursor.lastrowid
        logger.debug("Check-in #%d stored for goal #%d on %s", check_in_id, goal_id, local_date_key)
        return CheckIn(
            id=check_in_id,
            goal_id=goal_id,
            user_id=user_id,
            timestamp=timestamp,
            local_date_key=local_date_key,
            week_key=week_key,
            is_partial=is_partial,
        )

    def get_check_in(
        self, check_in_id: int, conn: sqlite3.Connection | None = None,
    ) -> CheckIn | None:
        with self._session(conn) as c:
            row = c.execute("SELECT * FROM check_ins WHERE id = ?", (check_in_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_check_in(row)

    def list_check_ins(
        self,
        goal_id: int,
        date_key: str | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[CheckIn]:
        """Check-ins of a goal, oldest first, optionally for a single day."""
        query = "SELECT * FROM check_ins WHERE goal_id = ?"
        params: list = [goal_id]
        if date_key is not None:
            query += " AND local_date_key = ?"
            params.append(date_key)
        query += " ORDER BY timestamp, id"
        with self._session(conn) as c:
            rows = c.execute(query, params).fetchall()
        return [self._row_to_check_in(r) for r in rows]

    def list_user_check_ins(
        self,
        user_id: int,
        week_key: str | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[CheckIn]:
        """All of a user's check-ins, oldest first, optionally for one ISO week."""
        query = "SELECT * FROM check_ins WHERE user_id = ?"
        params: list = [user_id]
        if week_key is not None:
            query += " AND week_key = ?"
            params.append(week_key)
        query += " ORDER BY timestamp, id"
        with self._session(conn) as c:
            rows = c.execute(query, params).fetchall()
        return [self._row_to_check_in(r) for r in rows]

    def mark_check_in_full(
        self,
        check_in_id: int,
        timestamp: datetime,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        """Upgrade a partial check-in to a full one completed at `timestamp`."""
        with self._session(conn) as c:
            cursor = c.execute(
                "UPDATE check_ins SET is_partial = 0, timestamp = ? WHERE id = ?",
                (_to_text(timestamp), check_in_id),
            )
        if cursor.rowcount == 0:
            raise ValueError(f"Check-in {check_in_id} not found")
        logger.info("Check-in #%d upgraded from partial to full", check_in_id)

    def delete_check_ins(
        self, check_in_ids: Iterable[int], conn: sqlite3.Connection | None = None,
    ) -> int:
        ids = list(check_in_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self._session(conn) as c:
            cursor = c.execute(f"DELETE FROM check_ins WHERE id IN ({placeholders})", ids)
        logger.info("Deleted %d check-in(s): %s", cursor.rowcount, ids)
        return cursor.rowcount


class LedgerDB(_SQLiteStore):
    """Append-only point ledger."""

    def _init_db(self) -> None:
        with self._session() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS point_ledger (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id       INTEGER NOT NULL,
                    goal_id       INTEGER NOT NULL,
                    week_key      TEXT    NOT NULL,
                    local_date    TEXT    NOT NULL,
                    points_milli  INTEGER NOT NULL,
                    reason        TEXT    NOT NULL,
                    source_id     INTEGER NOT NULL,
                    created_at    TEXT    NOT NULL,
                    UNIQUE (source_id, reason)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_ledger_user_week "
                "ON point_ledger (user_id, week_key)"
            )
        logger.debug("Ledger table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> PointLedgerEntry:
        return PointLedgerEntry(
            id=row["id"],
            user_id=row["user_id"],
            goal_id=row["goal_id"],
            week_key=row["week_key"],
            local_date=row["local_date"],
            points_milli=row["points_milli"],
            source_id=row["source_id"],
            reason=LedgerReason(row["reason"]),
            created_at=_from_text(row["created_at"]),
        )

    def add_entry(
        self, entry: PointLedgerEntry, conn: sqlite3.Connection | None = None,
    ) -> bool:
        """Record an award. Returns False if this source/reason was already recorded."""
        created_at = entry.created_at or datetime.now(UTC)
        with self._session(conn) as c:
            cursor = c.execute(
                """
                INSERT OR IGNORE INTO point_ledger
                    (user_id, goal_id, week_key, local_date, points_milli,
                     reason, source_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.user_id, entry.goal_id, entry.week_key, entry.local_date,
                    entry.points_milli, LedgerReason(entry.reason).value,
                    entry.source_id, _to_text(created_at),
                ),
            )
        inserted = cursor.rowcount == 1
        if inserted:
            entry.id = cursor.lastrowid
            entry.created_at = created_at
            logger.info(
                "Ledger: user %d +%d milli for goal #%d (check-in #%d, %s)",
                entry.user_id, entry.points_milli, entry.goal_id, entry.source_id, entry.week_key,
            )
        return inserted

    def week_total(
        self, user_id: int, week_key: str, conn: sqlite3.Connection | None = None,
    ) -> int:
        """Milli-points already recorded for the user in an ISO week."""
        with self._session(conn) as c:
            row = c.execute(
                "SELECT COALESCE(SUM(points_milli), 0) AS total FROM point_ledger "
                "WHERE user_id = ? AND week_key = ?",
                (user_id, week_key),
            ).fetchone()
        return row["total"]

    def list_entries(
        self, user_id: int, conn: sqlite3.Connection | None = None,
    ) -> list[PointLedgerEntry]:
        with self._session(conn) as c:
            rows = c.execute(
                "SELECT * FROM point_ledger WHERE user_id = ? ORDER BY id", (user_id,),
            ).fetchall()
        return [self._row_to_entry(r) for r in rows]

    def get_entry_for_source(
        self,
        source_id: int,
        reason: LedgerReason = LedgerReason.CHECKIN_POINTS,
        conn: sqlite3.Connection | None = None,
    ) -> PointLedgerEntry | None:
        with self._session(conn) as c:
            row = c.execute(
                "SELECT * FROM point_ledger WHERE source_id = ? AND reason = ?",
                (source_id, LedgerReason(reason).value),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_entry(row)


class GroupDB(_SQLiteStore):
    """Groups, memberships, weekly challenges and their approvals."""

    def _init_db(self) -> None:
        with self._session() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS groups (
                    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
                    name                    TEXT    NOT NULL,
                    rank                    INTEGER NOT NULL DEFAULT 1,
                    current_tier            TEXT    NOT NULL DEFAULT 'BRONZE',
                    weekly_completion_rate  REAL    NOT NULL DEFAULT 0,
                    last_tier_update        TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS group_members (
                    group_id  INTEGER NOT NULL,
                    user_id   INTEGER NOT NULL,
                    role      TEXT    NOT NULL DEFAULT 'MEMBER',
                    PRIMARY KEY (group_id, user_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS group_challenges (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    group_id          INTEGER NOT NULL,
                    week_key          TEXT    NOT NULL,
                    created_by        INTEGER NOT NULL,
                    mode              TEXT    NOT NULL DEFAULT 'STANDARD',
                    threshold         INTEGER NOT NULL DEFAULT 90,
                    duration_days     INTEGER NOT NULL DEFAULT 7,
                    start_date        TEXT    NOT NULL,
                    end_date          TEXT    NOT NULL,
                    status            TEXT    NOT NULL DEFAULT 'PENDING',
                    team_assignments  TEXT,
                    duo_assignments   TEXT,
                    created_at        TEXT    NOT NULL,
                    UNIQUE (group_id, week_key)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS challenge_approvals (
                    challenge_id  INTEGER NOT NULL,
                    user_id       INTEGER NOT NULL,
                    created_at    TEXT    NOT NULL,
                    PRIMARY KEY (challenge_id, user_id)
                )
            """)
        logger.debug("Group tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_group(row: sqlite3.Row) -> Group:
        return Group(
            id=row["id"],
            name=row["name"],
            rank=row["rank"],
            current_tier=row["current_tier"],
            weekly_completion_rate=row["weekly_completion_rate"],
            last_tier_update=_from_text(row["last_tier_update"]),
        )

    @staticmethod
    def _row_to_challenge(row: sqlite3.Row) -> GroupChallenge:
        teams = None
        if row["team_assignments"] is not None:
            data = json.loads(row["team_assignments"])
            teams = TeamAssignments(team1=data["team1"], team2=data["team2"])
        duos = None
        if row["duo_assignments"] is not None:
            duos = json.loads(row["duo_assignments"])
        return GroupChallenge(
            id=row["id"],
            group_id=row["group_id"],
            week_key=row["week_key"],
            created_by=row["created_by"],
            status=ChallengeStatus(row["status"]),
            start_date=_from_text(row["start_date"]),
            end_date=_from_text(row["end_date"]),
            mode=ChallengeMode(row["mode"]),
            threshold=row["threshold"],
            duration_days=row["duration_days"],
            team_assignments=teams,
            duo_assignments=duos,
            created_at=_from_text(row["created_at"]),
        )

    # --- groups and members ---

    def add_group(self, name: str) -> Group:
        with self._session() as conn:
            cursor = conn.execute("INSERT INTO groups (name) VALUES (?)", (name,))
            group_id = cursor.lastrowid
        logger.info("Group created: #%d '%s'", group_id, name)
        return Group(id=group_id, name=name)

    def get_group(self, group_id: int, conn: sqlite3.Connection | None = None) -> Group | None:
        with self._session(conn) as c:
            row = c.execute("SELECT * FROM groups WHERE id = ?", (group_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_group(row)

    def add_member(
        self, group_id: int, user_id: int, role: MemberRole | str = MemberRole.MEMBER,
    ) -> GroupMember:
        role = MemberRole(role)
        with self._session() as conn:
            conn.execute(
                "INSERT INTO group_members (group_id, user_id, role) VALUES (?, ?, ?)",
                (group_id, user_id, role.value),
            )
        logger.info("User %d joined group #%d as %s", user_id, group_id, role.value)
        return GroupMember(group_id=group_id, user_id=user_id, role=role)

    def get_member(
        self, group_id: int, user_id: int, conn: sqlite3.Connection | None = None,
    ) -> GroupMember | None:
        with self._session(conn) as c:
            row = c.execute(
                "SELECT * FROM group_members WHERE group_id = ? AND user_id = ?",
                (group_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return GroupMember(group_id=row["group_id"], user_id=row["user_id"], role=MemberRole(row["role"]))

    def list_members(
        self, group_id: int, conn: sqlite3.Connection | None = None,
    ) -> list[GroupMember]:
        with self._session(conn) as c:
            rows = c.execute(
                "SELECT * FROM group_members WHERE group_id = ? ORDER BY user_id", (group_id,),
            ).fetchall()
        return [
            GroupMember(group_id=r["group_id"], user_id=r["user_id"], role=MemberRole(r["role"]))
            for r in rows
        ]

    def member_count(self, group_id: int, conn: sqlite3.Connection | None = None) -> int:
        with self._session(conn) as c:
            row = c.execute(
                "SELECT COUNT(*) AS n FROM group_members WHERE group_id = ?", (group_id,),
            ).fetchone()
        return row["n"]

    def increment_rank(self, group_id: int, conn: sqlite3.Connection | None = None) -> None:
        with self._session(conn) as c:
            c.execute("UPDATE groups SET rank = rank + 1 WHERE id = ?", (group_id,))
        logger.info("Group #%d ranked up", group_id)

    def update_tier(
        self,
        group_id: int,
        tier: str,
        completion_rate: float,
        updated_at: datetime,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._session(conn) as c:
            cursor = c.execute(
                """
                UPDATE groups
                   SET current_tier = ?, weekly_completion_rate = ?, last_tier_update = ?
                 WHERE id = ?
                """,
                (tier, completion_rate, _to_text(updated_at), group_id),
            )
        if cursor.rowcount == 0:
            raise ValueError(f"Group {group_id} not found")

    # --- challenges ---

    def add_challenge(
        self,
        group_id: int,
        week_key: str,
        created_by: int,
        start_date: datetime,
        end_date: datetime,
        mode: ChallengeMode = ChallengeMode.STANDARD,
        threshold: int = 90,
        duration_days: int = 7,
        status: ChallengeStatus = ChallengeStatus.PENDING,
        team_assignments: TeamAssignments | None = None,
        duo_assignments: list[list[int]] | None = None,
        created_at: datetime | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> GroupChallenge:
        """Insert a challenge.

        Raises sqlite3.IntegrityError if the group already has one for the week.
        """
        created_at = created_at or datetime.now(UTC)
        teams_json = None
        if team_assignments is not None:
            teams_json = json.dumps(
                {"team1": team_assignments.team1, "team2": team_assignments.team2}
            )
        duos_json = json.dumps(duo_assignments) if duo_assignments is not None else None

        with self._session(conn) as c:
            cursor = c.execute(
                """
                INSERT INTO group_challenges
                    (group_id, week_key, created_by, mode, threshold, duration_days,
                     start_date, end_date, status, team_assignments, duo_assignments, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    group_id, week_key, created_by, ChallengeMode(mode).value, threshold,
                    duration_days, _to_text(start_date), _to_text(end_date),
                    ChallengeStatus(status).value, teams_json, duos_json, _to_text(created_at),
                ),
            )
            challenge_id = cursor.lastrowid

        logger.info(
            "Challenge #%d created for group #%d, week %s (%s, threshold %d%%)",
            challenge_id, group_id, week_key, ChallengeMode(mode).value, threshold,
        )
        return GroupChallenge(
            id=challenge_id,
            group_id=group_id,
            week_key=week_key,
            created_by=created_by,
            status=ChallengeStatus(status),
            start_date=start_date,
            end_date=end_date,
            mode=ChallengeMode(mode),
            threshold=threshold,
            duration_days=duration_days,
            team_assignments=team_assignments,
            duo_assignments=duo_assignments,
            created_at=created_at,
        )

    def get_challenge(
        self, challenge_id: int, conn: sqlite3.Connection | None = None,
    ) -> GroupChallenge | None:
        with self._session(conn) as c:
            row = c.execute(
                "SELECT * FROM group_challenges WHERE id = ?", (challenge_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_challenge(row)

    def get_challenge_for_week(
        self, group_id: int, week_key: str, conn: sqlite3.Connection | None = None,
    ) -> GroupChallenge | None:
        with self._session(conn) as c:
            row = c.execute(
                "SELECT * FROM group_challenges WHERE group_id = ? AND week_key = ?",
                (group_id, week_key),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_challenge(row)

    def list_challenges(
        self,
        group_id: int,
        statuses: Iterable[ChallengeStatus] | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[GroupChallenge]:
        """Challenges of a group ordered by week, optionally filtered by status."""
        query = "SELECT * FROM group_challenges WHERE group_id = ?"
        params: list = [group_id]
        if statuses is not None:
            values = [ChallengeStatus(s).value for s in statuses]
            if not values:
                return []
            query += f" AND status IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        query += " ORDER BY week_key"
        with self._session(conn) as c:
            rows = c.execute(query, params).fetchall()
        return [self._row_to_challenge(r) for r in rows]

    def update_challenge_status(
        self,
        challenge_id: int,
        from_status: ChallengeStatus,
        to_status: ChallengeStatus,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        """Move a challenge between statuses only if it is still in `from_status`.

        Returns True when this call made the change.
        """
        with self._session(conn) as c:
            cursor = c.execute(
                "UPDATE group_challenges SET status = ? WHERE id = ? AND status = ?",
                (ChallengeStatus(to_status).value, challenge_id, ChallengeStatus(from_status).value),
            )
        changed = cursor.rowcount == 1
        if changed:
            logger.info(
                "Challenge #%d: %s -> %s",
                challenge_id, ChallengeStatus(from_status).value, ChallengeStatus(to_status).value,
            )
        return changed

    # --- approvals ---

    def add_approval(
        self,
        challenge_id: int,
        user_id: int,
        created_at: datetime | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        """Record a member's approval. Returns False if they had already approved."""
        created_at = created_at or datetime.now(UTC)
        with self._session(conn) as c:
            cursor = c.execute(
                "INSERT OR IGNORE INTO challenge_approvals (challenge_id, user_id, created_at) "
                "VALUES (?, ?, ?)",
                (challenge_id, user_id, _to_text(created_at)),
            )
        return cursor.rowcount == 1

    def count_approvals(self, challenge_id: int, conn: sqlite3.Connection | None = None) -> int:
        with self._session(conn) as c:
            row = c.execute(
                "SELECT COUNT(*) AS n FROM challenge_approvals WHERE challenge_id = ?",
                (challenge_id,),
            ).fetchone()
        return row["n"]

    def has_approved(
        self, challenge_id: int, user_id: int, conn: sqlite3.Connection | None = None,
    ) -> bool:
        with self._session(conn) as c:
            row = c.execute(
                "SELECT 1 FROM challenge_approvals WHERE challenge_id = ? AND user_id = ?",
                (challenge_id, user_id),
            ).fetchone()
        return row is not None


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    path = "data/demo_goalgrid.db"
    users, goals, ledger, groups = UserDB(path), GoalDB(path), LedgerDB(path), GroupDB(path)

    alice = users.add_user("Alice", "America/Chicago")
    walk = goals.add_goal(alice.id, "Morning walk", Cadence.DAILY)
    goals.add_goal(alice.id, "Read a chapter", Cadence.WEEKLY, weekly_target=3)
    print(f"Goals: {goals.list_goals(alice.id)}")

    now = datetime.now(UTC)
    check_in = goals.add_check_in(
        walk.id, alice.id, now, day_key(now, alice.timezone), week_key(now, alice.timezone),
    )
    print(f"Check-in: {check_in}")

    squad = groups.add_group("Early birds")
    groups.add_member(squad.id, alice.id, MemberRole.ADMIN)
    print(f"Members: {groups.list_members(squad.id)}")
    print(f"Ledger: {ledger.list_entries(alice.id)}")
