import sqlite3
import csv
import os
import datetime
import json
import logging
from contextlib import contextmanager
from typing import List, Tuple, Optional

from models import ExerciseType, Goal, Workout

logger = logging.getLogger(__name__)


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "workouts": (
            """CREATE TABLE workouts (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    date TEXT NOT NULL,
                    is_template INTEGER NOT NULL DEFAULT 0,
                    completed_at TEXT,
                    updated_at TEXT NOT NULL,
                    data TEXT NOT NULL
                );""",
            [
                "id",
                "user_id",
                "date",
                "is_template",
                "completed_at",
                "updated_at",
                "data",
            ],
        ),
        "exercise_types": (
            """CREATE TABLE exercise_types (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    category TEXT NOT NULL DEFAULT 'other',
                    description TEXT NOT NULL DEFAULT '',
                    instructions TEXT NOT NULL DEFAULT '[]',
                    muscles TEXT NOT NULL DEFAULT '',
                    is_custom INTEGER NOT NULL DEFAULT 0,
                    created_by TEXT
                );""",
            [
                "id",
                "name",
                "category",
                "description",
                "instructions",
                "muscles",
                "is_custom",
                "created_by",
            ],
        ),
        "goals": (
            """CREATE TABLE goals (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    exercise_id TEXT,
                    target_value REAL NOT NULL,
                    current_value REAL NOT NULL DEFAULT 0,
                    target_date TEXT NOT NULL,
                    is_completed INTEGER NOT NULL DEFAULT 0,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                );""",
            [
                "id",
                "user_id",
                "type",
                "exercise_id",
                "target_value",
                "current_value",
                "target_date",
                "is_completed",
                "title",
                "description",
                "created_at",
            ],
        ),
        "session_snapshots": (
            """CREATE TABLE session_snapshots (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT ''
                );""",
            ["key", "value", "updated_at"],
        ),
        "notifications": (
            """CREATE TABLE notifications (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    message TEXT NOT NULL,
                    read INTEGER NOT NULL DEFAULT 0
                );""",
            ["id", "timestamp", "title", "message", "read"],
        ),
    }

    def __init__(self, db_path: str = "workout.db") -> None:
        self._db_path = db_path
        self._ensure_schema()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_workouts_owner_date "
                "ON workouts (user_id, date);"
            )

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        logger.info("migrating table %s", table)
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)
        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            conn.execute(
                f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
            )
        conn.execute(f"DROP TABLE {table}_old;")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()

    def _delete_all(self, table: str) -> None:
        self.execute(f"DELETE FROM {table};")


def _lower_bound(value: datetime.date) -> str:
    if not isinstance(value, datetime.datetime):
        value = datetime.datetime.combine(value, datetime.time.min)
    return value.isoformat()


def _upper_bound(value: datetime.date) -> Tuple[str, str]:
    """Return the comparison operator and bound for an inclusive end date."""
    if isinstance(value, datetime.datetime):
        return "<=", value.isoformat()
    nxt = datetime.datetime.combine(value + datetime.timedelta(days=1), datetime.time.min)
    return "<", nxt.isoformat()


class WorkoutRepository(BaseRepository):
    """Repository for workout documents keyed by id."""

    def get(self, workout_id: str) -> Optional[Workout]:
        rows = self.fetch_all("SELECT data FROM workouts WHERE id = ?;", (workout_id,))
        if not rows:
            return None
        return Workout.model_validate_json(rows[0][0])

    def put(self, workout: Workout) -> str:
        self.execute(
            "INSERT INTO workouts (id, user_id, date, is_template, completed_at, updated_at, data) "
            "VALUES (?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET user_id=excluded.user_id, date=excluded.date, "
            "is_template=excluded.is_template, completed_at=excluded.completed_at, "
            "updated_at=excluded.updated_at, data=excluded.data;",
            (
                workout.id,
                workout.user_id,
                workout.date.isoformat(),
                int(workout.is_template),
                workout.completed_at.isoformat() if workout.completed_at else None,
                workout.updated_at.isoformat(),
                workout.model_dump_json(),
            ),
        )
        return workout.id

    def delete(self, workout_id: str) -> None:
        self.execute("DELETE FROM workouts WHERE id = ?;", (workout_id,))

    def delete_all(self) -> None:
        self._delete_all("workouts")

    def fetch_by_owner(
        self,
        user_id: str,
        start_date: Optional[datetime.date] = None,
        end_date: Optional[datetime.date] = None,
        is_template: Optional[bool] = None,
        completed_only: bool = False,
        descending: bool = False,
    ) -> List[Workout]:
        query = "SELECT data FROM workouts"
        where_clauses: list[str] = ["user_id = ?"]
        params: list[str | int] = [user_id]
        if start_date is not None:
            where_clauses.append("date >= ?")
            params.append(_lower_bound(start_date))
        if end_date is not None:
            op, bound = _upper_bound(end_date)
            where_clauses.append(f"date {op} ?")
            params.append(bound)
        if is_template is not None:
            where_clauses.append("is_template = ?")
            params.append(int(is_template))
        if completed_only:
            where_clauses.append("completed_at IS NOT NULL")
        query += " WHERE " + " AND ".join(where_clauses)
        order = "DESC" if descending else "ASC"
        query += f" ORDER BY date {order}, id {order};"
        return [
            Workout.model_validate_json(data)
            for (data,) in self.fetch_all(query, tuple(params))
        ]

    def fetch_templates(self, user_id: str) -> List[Workout]:
        return self.fetch_by_owner(user_id, is_template=True)

    def fetch_completed(
        self,
        user_id: str,
        start_date: Optional[datetime.date] = None,
        end_date: Optional[datetime.date] = None,
    ) -> List[Workout]:
        return self.fetch_by_owner(
            user_id,
            start_date=start_date,
            end_date=end_date,
            is_template=False,
            completed_only=True,
        )


class ExerciseTypeRepository(BaseRepository):
    """Repository for the exercise catalog."""

    def __init__(self, db_path: str = "workout.db", seed: bool = True) -> None:
        super().__init__(db_path)
        if seed:
            self._import_exercise_catalog_data()

    def _import_exercise_catalog_data(self) -> None:
        csv_path = os.path.join(os.path.dirname(__file__), "exercise_catalog.csv")
        if not os.path.exists(csv_path):
            return
        with open(csv_path, newline="", encoding="utf-8") as csvfile:
            reader = csv.DictReader(csvfile)
            records = [
                ExerciseType(
                    id=row["id"],
                    name=row["name"],
                    category=row["category"],
                    description=row["description"],
                    instructions=[i for i in row["instructions"].split("|") if i],
                    muscles=[m for m in row["muscles"].split("|") if m],
                )
                for row in reader
            ]
        with self._connection() as conn:
            for et in records:
                conn.execute(
                    "INSERT OR IGNORE INTO exercise_types (id, name, category, description, instructions, muscles, is_custom, created_by) "
                    "VALUES (?, ?, ?, ?, ?, ?, 0, NULL);",
                    (
                        et.id,
                        et.name,
                        et.category.value,
                        et.description,
                        json.dumps(et.instructions),
                        "|".join(et.muscles),
                    ),
                )

    @staticmethod
    def _row_to_model(row: Tuple) -> ExerciseType:
        eid, name, category, description, instructions, muscles, is_custom, created_by = row
        return ExerciseType(
            id=eid,
            name=name,
            category=category,
            description=description,
            instructions=json.loads(instructions),
            muscles=[m for m in muscles.split("|") if m],
            is_custom=bool(is_custom),
            created_by=created_by,
        )

    def add(self, exercise_type: ExerciseType) -> str:
        try:
            self.execute(
                "INSERT INTO exercise_types (id, name, category, description, instructions, muscles, is_custom, created_by) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?);",
                (
                    exercise_type.id,
                    exercise_type.name,
                    exercise_type.category.value,
                    exercise_type.description,
                    json.dumps(exercise_type.instructions),
                    "|".join(exercise_type.muscles),
                    int(exercise_type.is_custom),
                    exercise_type.created_by,
                ),
            )
        except sqlite3.IntegrityError:
            raise ValueError(f"exercise '{exercise_type.name}' already exists")
        return exercise_type.id

    def update(self, exercise_type: ExerciseType) -> None:
        if self.get(exercise_type.id) is None:
            raise ValueError("exercise type not found")
        self.execute(
            "UPDATE exercise_types SET name = ?, category = ?, description = ?, instructions = ?, muscles = ?, is_custom = ?, created_by = ? "
            "WHERE id = ?;",
            (
                exercise_type.name,
                exercise_type.category.value,
                exercise_type.description,
                json.dumps(exercise_type.instructions),
                "|".join(exercise_type.muscles),
                int(exercise_type.is_custom),
                exercise_type.created_by,
                exercise_type.id,
            ),
        )

    def get(self, type_id: str) -> Optional[ExerciseType]:
        rows = self.fetch_all(
            "SELECT id, name, category, description, instructions, muscles, is_custom, created_by "
            "FROM exercise_types WHERE id = ?;",
            (type_id,),
        )
        return self._row_to_model(rows[0]) if rows else None

    def fetch_all_types(self, category: Optional[str] = None) -> List[ExerciseType]:
        query = (
            "SELECT id, name, category, description, instructions, muscles, is_custom, created_by "
            "FROM exercise_types"
        )
        params: tuple = ()
        if category:
            query += " WHERE category = ?"
            params = (category,)
        query += " ORDER BY name;"
        return [self._row_to_model(r) for r in self.fetch_all(query, params)]

    def delete(self, type_id: str) -> None:
        self.execute("DELETE FROM exercise_types WHERE id = ?;", (type_id,))


class GoalRepository(BaseRepository):
    """Repository for goal management."""

    @staticmethod
    def _row_to_model(row: Tuple) -> Goal:
        (
            gid,
            user_id,
            gtype,
            exercise_id,
            target_value,
            current_value,
            target_date,
            is_completed,
            title,
            description,
            created_at,
        ) = row
        return Goal(
            id=gid,
            user_id=user_id,
            type=gtype,
            exercise_id=exercise_id,
            target_value=target_value,
            current_value=current_value,
            target_date=datetime.date.fromisoformat(target_date),
            is_completed=bool(is_completed),
            title=title,
            description=description,
            created_at=datetime.datetime.fromisoformat(created_at),
        )

    def put(self, goal: Goal) -> str:
        self.execute(
            "INSERT INTO goals (id, user_id, type, exercise_id, target_value, current_value, target_date, is_completed, title, description, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET type=excluded.type, exercise_id=excluded.exercise_id, "
            "target_value=excluded.target_value, current_value=excluded.current_value, "
            "target_date=excluded.target_date, is_completed=excluded.is_completed, "
            "title=excluded.title, description=excluded.description;",
            (
                goal.id,
                goal.user_id,
                goal.type.value,
                goal.exercise_id,
                goal.target_value,
                goal.current_value,
                goal.target_date.isoformat(),
                int(goal.is_completed),
                goal.title,
                goal.description,
                goal.created_at.isoformat(),
            ),
        )
        return goal.id

    def get(self, goal_id: str) -> Optional[Goal]:
        rows = self.fetch_all("SELECT * FROM goals WHERE id = ?;", (goal_id,))
        return self._row_to_model(rows[0]) if rows else None

    def fetch_by_owner(
        self, user_id: str, completed: Optional[bool] = None
    ) -> List[Goal]:
        query = "SELECT * FROM goals WHERE user_id = ?"
        params: list = [user_id]
        if completed is not None:
            query += " AND is_completed = ?"
            params.append(int(completed))
        query += " ORDER BY target_date, created_at;"
        return [self._row_to_model(r) for r in self.fetch_all(query, tuple(params))]

    def delete(self, goal_id: str) -> None:
        self.execute("DELETE FROM goals WHERE id = ?;", (goal_id,))


class SessionSnapshotRepository(BaseRepository):
    """Durable key/value storage for in-progress session snapshots."""

    def get_item(self, key: str) -> Optional[str]:
        rows = self.fetch_all(
            "SELECT value FROM session_snapshots WHERE key = ?;", (key,)
        )
        return rows[0][0] if rows else None

    def set_item(self, key: str, value: str) -> None:
        self.execute(
            "INSERT INTO session_snapshots (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at;",
            (key, value, datetime.datetime.now().isoformat()),
        )

    def remove_item(self, key: str) -> None:
        self.execute("DELETE FROM session_snapshots WHERE key = ?;", (key,))

    def keys(self) -> List[str]:
        return [k for (k,) in self.fetch_all("SELECT key FROM session_snapshots ORDER BY key;")]


class NotificationRepository(BaseRepository):
    """Repository for user notifications."""

    def add(self, title: str, message: str) -> int:
        return self.execute(
            "INSERT INTO notifications (timestamp, title, message, read) VALUES (?, ?, ?, 0);",
            (datetime.datetime.now().isoformat(), title, message),
        )

    def fetch_all(self, unread_only: bool = False) -> list[dict[str, object]]:
        sql = "SELECT id, timestamp, title, message, read FROM notifications"
        if unread_only:
            sql += " WHERE read=0"
        sql += " ORDER BY id;"
        rows = super().fetch_all(sql)
        result: list[dict[str, object]] = []
        for r in rows:
            result.append(
                {
                    "id": r[0],
                    "timestamp": r[1],
                    "title": r[2],
                    "message": r[3],
                    "read": bool(r[4]),
                }
            )
        return result

    def mark_read(self, nid: int) -> None:
        self.execute("UPDATE notifications SET read=1 WHERE id=?;", (nid,))

    def unread_count(self) -> int:
        rows = super().fetch_all(
            "SELECT COUNT(*) FROM notifications WHERE read=0;"
        )
        return rows[0][0] if rows else 0
