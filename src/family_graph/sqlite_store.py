"""SQLite-backed edge store.

Edge invariants are enforced in the database itself so that two writers
racing past the application-level guard still cannot corrupt the graph:

- partial unique indexes reject duplicate active edges and memberships
- a BEFORE INSERT trigger rejects a third biological parent, then a
  second biological parent of the same sex
- reachability is checked with a recursive CTE inside the same
  ``BEGIN IMMEDIATE`` transaction as the insert (SQLite does not allow
  CTEs in trigger bodies)
"""
from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import UTC, date, datetime
from pathlib import Path
from uuid import UUID

from .exceptions import EdgeConstraintError, NotFoundError, ValidationReason
from .logging import get_logger
from .store import (
    ALREADY_MEMBER_MESSAGE,
    CYCLE_MESSAGE,
    DUPLICATE_EDGE_MESSAGE,
    MAX_PARENTS_MESSAGE,
    DatePrecision,
    EdgeStore,
    ParentChildEdge,
    ParentChildKind,
    Person,
    Sex,
    Union,
    UnionMember,
    UnionType,
    parent_term,
)

logger = get_logger(__name__)

_PERSON_COLUMNS = (
    "person_id, tree_id, primary_name, localized_names_json, sex, birth_date, "
    "birth_precision, death_date, death_precision, occupation"
)
_EDGE_COLUMNS = "edge_id, parent_id, child_id, kind, notes, created_at, is_deleted, deleted_at"


def _d(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteEdgeStore(EdgeStore):
    """Durable edge store on a single SQLite file."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _get_conn(self):
        # Autocommit mode; multi-statement writes open their own transaction
        conn = sqlite3.connect(self.db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA busy_timeout=5000;")
        try:
            yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._get_conn() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS persons (
                    person_id TEXT PRIMARY KEY,
                    tree_id TEXT,
                    primary_name TEXT NOT NULL,
                    localized_names_json TEXT NOT NULL DEFAULT '{}',
                    sex TEXT NOT NULL,
                    birth_date TEXT,
                    birth_precision TEXT NOT NULL,
                    death_date TEXT,
                    death_precision TEXT NOT NULL,
                    occupation TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_persons_tree ON persons(tree_id);

                CREATE TABLE IF NOT EXISTS parent_child (
                    edge_id TEXT PRIMARY KEY,
                    parent_id TEXT NOT NULL REFERENCES persons(person_id),
                    child_id TEXT NOT NULL REFERENCES persons(person_id),
                    kind TEXT NOT NULL,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    is_deleted INTEGER NOT NULL DEFAULT 0,
                    deleted_at TEXT
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_parent_child_active
                    ON parent_child(parent_id, child_id) WHERE is_deleted = 0;
                CREATE INDEX IF NOT EXISTS idx_parent_child_child ON parent_child(child_id);

                -- Count check runs before the sex check
                CREATE TRIGGER IF NOT EXISTS trg_parent_child_biological
                BEFORE INSERT ON parent_child
                WHEN NEW.kind = 'biological'
                BEGIN
                    SELECT RAISE(ABORT, 'max_biological_parents')
                    WHERE (
                        SELECT COUNT(*) FROM parent_child
                        WHERE child_id = NEW.child_id AND kind = 'biological' AND is_deleted = 0
                    ) >= 2;
                    SELECT RAISE(ABORT, 'same_sex_biological_parent')
                    WHERE EXISTS (
                        SELECT 1 FROM parent_child pc
                        JOIN persons p ON p.person_id = pc.parent_id
                        WHERE pc.child_id = NEW.child_id
                          AND pc.kind = 'biological'
                          AND pc.is_deleted = 0
                          AND p.sex = (SELECT sex FROM persons WHERE person_id = NEW.parent_id)
                    );
                END;

                CREATE TABLE IF NOT EXISTS unions (
                    union_id TEXT PRIMARY KEY,
                    tree_id TEXT,
                    union_type TEXT NOT NULL,
                    start_date TEXT,
                    start_precision TEXT NOT NULL,
                    end_date TEXT,
                    end_precision TEXT NOT NULL,
                    notes TEXT,
                    is_deleted INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS union_members (
                    member_id TEXT PRIMARY KEY,
                    union_id TEXT NOT NULL REFERENCES unions(union_id),
                    person_id TEXT NOT NULL REFERENCES persons(person_id),
                    role TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    is_deleted INTEGER NOT NULL DEFAULT 0,
                    deleted_at TEXT
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_union_members_active
                    ON union_members(union_id, person_id) WHERE is_deleted = 0;
                CREATE INDEX IF NOT EXISTS idx_union_members_person ON union_members(person_id);
                """
            )

    # ---- row mapping ----

    @staticmethod
    def _person(row: sqlite3.Row) -> Person:
        return Person(
            person_id=UUID(row["person_id"]),
            tree_id=UUID(row["tree_id"]) if row["tree_id"] else None,
            primary_name=row["primary_name"],
            localized_names=json.loads(row["localized_names_json"] or "{}"),
            sex=Sex(row["sex"]),
            birth_date=_d(row["birth_date"]),
            birth_precision=DatePrecision(row["birth_precision"]),
            death_date=_d(row["death_date"]),
            death_precision=DatePrecision(row["death_precision"]),
            occupation=row["occupation"],
        )

    @staticmethod
    def _edge(row: sqlite3.Row) -> ParentChildEdge:
        return ParentChildEdge(
            edge_id=UUID(row["edge_id"]),
            parent_id=UUID(row["parent_id"]),
            child_id=UUID(row["child_id"]),
            kind=ParentChildKind(row["kind"]),
            notes=row["notes"],
            created_at=_dt(row["created_at"]) or datetime.now(UTC),
            is_deleted=bool(row["is_deleted"]),
            deleted_at=_dt(row["deleted_at"]),
        )

    @staticmethod
    def _union(row: sqlite3.Row) -> Union:
        return Union(
            union_id=UUID(row["union_id"]),
            tree_id=UUID(row["tree_id"]) if row["tree_id"] else None,
            union_type=UnionType(row["union_type"]),
            start_date=_d(row["start_date"]),
            start_precision=DatePrecision(row["start_precision"]),
            end_date=_d(row["end_date"]),
            end_precision=DatePrecision(row["end_precision"]),
            notes=row["notes"],
            is_deleted=bool(row["is_deleted"]),
        )

    @staticmethod
    def _member(row: sqlite3.Row) -> UnionMember:
        return UnionMember(
            member_id=UUID(row["member_id"]),
            union_id=UUID(row["union_id"]),
            person_id=UUID(row["person_id"]),
            role=row["role"],
            created_at=_dt(row["created_at"]) or datetime.now(UTC),
            is_deleted=bool(row["is_deleted"]),
            deleted_at=_dt(row["deleted_at"]),
        )

    @staticmethod
    def _person_with_prefix(row: sqlite3.Row) -> Person:
        return Person(
            person_id=UUID(row["p_person_id"]),
            tree_id=UUID(row["p_tree_id"]) if row["p_tree_id"] else None,
            primary_name=row["p_primary_name"],
            localized_names=json.loads(row["p_localized_names_json"] or "{}"),
            sex=Sex(row["p_sex"]),
            birth_date=_d(row["p_birth_date"]),
            birth_precision=DatePrecision(row["p_birth_precision"]),
            death_date=_d(row["p_death_date"]),
            death_precision=DatePrecision(row["p_death_precision"]),
            occupation=row["p_occupation"],
        )

    # ---- persons ----

    def add_person(self, person: Person) -> Person:
        with self._get_conn() as conn:
            conn.execute(
                f"""
                INSERT INTO persons ({_PERSON_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(person_id) DO UPDATE SET
                    tree_id=excluded.tree_id,
                    primary_name=excluded.primary_name,
                    localized_names_json=excluded.localized_names_json,
                    sex=excluded.sex,
                    birth_date=excluded.birth_date,
                    birth_precision=excluded.birth_precision,
                    death_date=excluded.death_date,
                    death_precision=excluded.death_precision,
                    occupation=excluded.occupation
                """,
                (
                    str(person.person_id),
                    str(person.tree_id) if person.tree_id else None,
                    person.primary_name,
                    json.dumps(person.localized_names, ensure_ascii=False),
                    person.sex.value,
                    person.birth_date.isoformat() if person.birth_date else None,
                    person.birth_precision.value,
                    person.death_date.isoformat() if person.death_date else None,
                    person.death_precision.value,
                    person.occupation,
                ),
            )
        return person

    def get_person(self, person_id: UUID) -> Person | None:
        with self._get_conn() as conn:
            row = conn.execute(
                f"SELECT {_PERSON_COLUMNS} FROM persons WHERE person_id = ?",
                (str(person_id),),
            ).fetchone()
        return self._person(row) if row else None

    def list_persons(self, tree_id: UUID | None = None) -> list[Person]:
        with self._get_conn() as conn:
            if tree_id is None:
                rows = conn.execute(f"SELECT {_PERSON_COLUMNS} FROM persons ORDER BY rowid").fetchall()
            else:
                rows = conn.execute(
                    f"SELECT {_PERSON_COLUMNS} FROM persons WHERE tree_id = ? ORDER BY rowid",
                    (str(tree_id),),
                ).fetchall()
        return [self._person(r) for r in rows]

    # ---- parent-child edges ----

    def _related(self, join_column: str, filter_column: str, person_id: UUID) -> list[tuple[ParentChildEdge, Person]]:
        person_cols = ", ".join(f"p.{c.strip()} AS p_{c.strip()}" for c in _PERSON_COLUMNS.split(","))
        edge_cols = ", ".join(f"pc.{c.strip()}" for c in _EDGE_COLUMNS.split(","))
        with self._get_conn() as conn:
            rows = conn.execute(
                f"""
                SELECT {edge_cols}, {person_cols}
                FROM parent_child pc
                JOIN persons p ON p.person_id = pc.{join_column}
                WHERE pc.{filter_column} = ? AND pc.is_deleted = 0
                ORDER BY pc.rowid
                """,
                (str(person_id),),
            ).fetchall()
        return [(self._edge(r), self._person_with_prefix(r)) for r in rows]

    def get_parents(self, child_id: UUID) -> list[tuple[ParentChildEdge, Person]]:
        return self._related("parent_id", "child_id", child_id)

    def get_children(self, parent_id: UUID) -> list[tuple[ParentChildEdge, Person]]:
        return self._related("child_id", "parent_id", parent_id)

    def has_parents(self, person_id: UUID) -> bool:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT 1 FROM parent_child WHERE child_id = ? AND is_deleted = 0 LIMIT 1",
                (str(person_id),),
            ).fetchone()
        return row is not None

    def has_children(self, person_id: UUID) -> bool:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT 1 FROM parent_child WHERE parent_id = ? AND is_deleted = 0 LIMIT 1",
                (str(person_id),),
            ).fetchone()
        return row is not None

    def get_edge(self, parent_id: UUID, child_id: UUID) -> ParentChildEdge | None:
        with self._get_conn() as conn:
            row = conn.execute(
                f"""
                SELECT {_EDGE_COLUMNS} FROM parent_child
                WHERE parent_id = ? AND child_id = ? AND is_deleted = 0
                """,
                (str(parent_id), str(child_id)),
            ).fetchone()
        return self._edge(row) if row else None

    def insert_edge(self, edge: ParentChildEdge) -> ParentChildEdge:
        with self._get_conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                parent_row = conn.execute(
                    "SELECT sex FROM persons WHERE person_id = ?", (str(edge.parent_id),)
                ).fetchone()
                if parent_row is None:
                    raise NotFoundError("person", edge.parent_id)
                if conn.execute(
                    "SELECT 1 FROM persons WHERE person_id = ?", (str(edge.child_id),)
                ).fetchone() is None:
                    raise NotFoundError("person", edge.child_id)

                if conn.execute(
                    "SELECT 1 FROM parent_child WHERE parent_id = ? AND child_id = ? AND is_deleted = 0",
                    (str(edge.parent_id), str(edge.child_id)),
                ).fetchone() is not None:
                    raise EdgeConstraintError(ValidationReason.DUPLICATE_EDGE, DUPLICATE_EDGE_MESSAGE)

                # UNION (not UNION ALL) deduplicates, so the walk terminates on diamonds
                reachable = conn.execute(
                    """
                    WITH RECURSIVE descendants(person_id) AS (
                        SELECT ?
                        UNION
                        SELECT pc.child_id FROM parent_child pc
                        JOIN descendants d ON pc.parent_id = d.person_id
                        WHERE pc.is_deleted = 0
                    )
                    SELECT 1 FROM descendants WHERE person_id = ? LIMIT 1
                    """,
                    (str(edge.child_id), str(edge.parent_id)),
                ).fetchone()
                if reachable is not None:
                    raise EdgeConstraintError(ValidationReason.CYCLE, CYCLE_MESSAGE)

                conn.execute(
                    f"INSERT INTO parent_child ({_EDGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, 0, NULL)",
                    (
                        str(edge.edge_id),
                        str(edge.parent_id),
                        str(edge.child_id),
                        edge.kind.value,
                        edge.notes,
                        edge.created_at.isoformat(),
                    ),
                )
                conn.execute("COMMIT")
            except sqlite3.IntegrityError as e:
                conn.execute("ROLLBACK")
                raise self._constraint_error(str(e), Sex(parent_row["sex"])) from e
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        logger.debug("sqlite.edge_inserted", edge_id=str(edge.edge_id))
        return edge

    @staticmethod
    def _constraint_error(message: str, parent_sex: Sex) -> EdgeConstraintError:
        if "max_biological_parents" in message:
            return EdgeConstraintError(ValidationReason.MAX_BIOLOGICAL_PARENTS, MAX_PARENTS_MESSAGE)
        if "same_sex_biological_parent" in message:
            return EdgeConstraintError(
                ValidationReason.SAME_SEX_BIOLOGICAL_PARENT,
                f"This person already has a biological {parent_term(parent_sex)}",
            )
        if "UNIQUE" in message:
            return EdgeConstraintError(ValidationReason.DUPLICATE_EDGE, DUPLICATE_EDGE_MESSAGE)
        return EdgeConstraintError(ValidationReason.INVALID_ARGUMENT, message)

    def soft_delete_edge(self, edge_id: UUID) -> ParentChildEdge | None:
        now = datetime.now(UTC).isoformat()
        with self._get_conn() as conn:
            cur = conn.execute(
                "UPDATE parent_child SET is_deleted = 1, deleted_at = ? WHERE edge_id = ? AND is_deleted = 0",
                (now, str(edge_id)),
            )
            if cur.rowcount == 0:
                return None
            row = conn.execute(
                f"SELECT {_EDGE_COLUMNS} FROM parent_child WHERE edge_id = ?", (str(edge_id),)
            ).fetchone()
        return self._edge(row)

    # ---- unions ----

    def add_union(self, union: Union) -> Union:
        with self._get_conn() as conn:
            conn.execute(
                """
                INSERT INTO unions (union_id, tree_id, union_type, start_date, start_precision,
                                    end_date, end_precision, notes, is_deleted)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(union.union_id),
                    str(union.tree_id) if union.tree_id else None,
                    union.union_type.value,
                    union.start_date.isoformat() if union.start_date else None,
                    union.start_precision.value,
                    union.end_date.isoformat() if union.end_date else None,
                    union.end_precision.value,
                    union.notes,
                    int(union.is_deleted),
                ),
            )
        return union

    def get_union(self, union_id: UUID) -> Union | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM unions WHERE union_id = ? AND is_deleted = 0", (str(union_id),)
            ).fetchone()
        return self._union(row) if row else None

    def get_unions_for(self, person_id: UUID) -> list[Union]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """
                SELECT u.* FROM unions u
                JOIN union_members m ON m.union_id = u.union_id
                WHERE m.person_id = ? AND m.is_deleted = 0 AND u.is_deleted = 0
                ORDER BY m.rowid
                """,
                (str(person_id),),
            ).fetchall()
        return [self._union(r) for r in rows]

    def get_union_members(self, union_id: UUID) -> list[tuple[UnionMember, Person]]:
        person_cols = ", ".join(f"p.{c.strip()} AS p_{c.strip()}" for c in _PERSON_COLUMNS.split(","))
        with self._get_conn() as conn:
            rows = conn.execute(
                f"""
                SELECT m.*, {person_cols}
                FROM union_members m
                JOIN persons p ON p.person_id = m.person_id
                WHERE m.union_id = ? AND m.is_deleted = 0
                ORDER BY m.rowid
                """,
                (str(union_id),),
            ).fetchall()
        return [(self._member(r), self._person_with_prefix(r)) for r in rows]

    def add_union_member(self, member: UnionMember) -> UnionMember:
        if self.get_union(member.union_id) is None:
            raise NotFoundError("union", member.union_id)
        if self.get_person(member.person_id) is None:
            raise NotFoundError("person", member.person_id)
        try:
            with self._get_conn() as conn:
                conn.execute(
                    """
                    INSERT INTO union_members (member_id, union_id, person_id, role, created_at, is_deleted)
                    VALUES (?, ?, ?, ?, ?, 0)
                    """,
                    (
                        str(member.member_id),
                        str(member.union_id),
                        str(member.person_id),
                        member.role,
                        member.created_at.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise EdgeConstraintError(ValidationReason.ALREADY_MEMBER, ALREADY_MEMBER_MESSAGE) from e
        return member

    def soft_delete_union_member(self, union_id: UUID, person_id: UUID) -> UnionMember | None:
        now = datetime.now(UTC).isoformat()
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM union_members WHERE union_id = ? AND person_id = ? AND is_deleted = 0",
                (str(union_id), str(person_id)),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                "UPDATE union_members SET is_deleted = 1, deleted_at = ? WHERE member_id = ?",
                (now, row["member_id"]),
            )
        member = self._member(row)
        member.is_deleted = True
        member.deleted_at = datetime.fromisoformat(now)
        return member
