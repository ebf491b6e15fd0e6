"""
Rule storage.

Rules are stored as rows with their descriptors serialized to JSON under
the historical field names. The source app and job names are copied to
their own columns so the per-app and per-job lookups can use an index.
Deletion is always a soft delete: the removed flag is set and the rule
stays around so strategies can reconcile the removal.
"""

import json
import sqlite3
from dataclasses import dataclass, field

from aclapi.errors import (
    InstanceAlreadyExistsError,
    RuleNotFoundError,
    StorageReadError,
    StorageWriteError,
)
from aclapi.schema import Rule, RuleType
from aclapi.store.db import AclDB, from_iso, generate_id, to_iso, utcnow

INSERT_RULE_SQL = """
INSERT INTO rules (
    rule_id, rule_name, source_json, destination_json,
    source_app, source_job, removed, metadata_json,
    created, creator
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

# Replace by id only; a name taken by another rule still fails
UPSERT_RULE_SQL = """
ON CONFLICT (rule_id) DO UPDATE SET
    rule_name = excluded.rule_name,
    source_json = excluded.source_json,
    destination_json = excluded.destination_json,
    source_app = excluded.source_app,
    source_job = excluded.source_job,
    removed = excluded.removed,
    metadata_json = excluded.metadata_json,
    created = excluded.created,
    creator = excluded.creator
"""

@dataclass
class FindOpts:
    """
    Filters for RuleStore.find_all(). Empty values don't filter.

    Attributes:
        metadata: Every key must be present with the same value
        creator: Exact creator match
        source_tsuru_app: Source app name
        source_tsuru_job: Source job name
    """

    metadata: dict[str, str] = field(default_factory=dict)
    creator: str = ""
    source_tsuru_app: str = ""
    source_tsuru_job: str = ""


@dataclass
class DeleteOpts:
    """Selects the rules to soft-delete, by id and/or metadata."""

    rule_id: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


class RuleStore:
    """Persists rules in the rules table of an AclDB."""

    def __init__(self, db: AclDB) -> None:
        self.db = db

    def find(self, id_or_name: str) -> Rule:
        """
        Get a rule by id or by name.

        Raises:
            RuleNotFoundError: If neither matches
            StorageReadError: If the query fails
        """
        try:
            with self.db.reading() as conn:
                row = conn.execute(
                    "SELECT * FROM rules WHERE rule_id = ? OR rule_name = ? LIMIT 1",
                    (id_or_name, id_or_name),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageReadError(operation="find_rule", underlying_error=str(e)) from e
        if row is None:
            raise RuleNotFoundError(operation="find_rule", rule_id=id_or_name)
        return _row_to_rule(row)

    def save(self, rules: list[Rule], upsert: bool = False) -> list[Rule]:
        """
        Store rules, assigning ids and creation time.

        Every rule gets created set to now; rules without an id get a new
        one. The passed rule objects are updated in place.

        Args:
            rules: Rules to store
            upsert: Replace existing rules by id instead of failing

        Returns:
            The same rules, with rule_id and created filled in

        Raises:
            InstanceAlreadyExistsError: On id or name collision without upsert
            StorageWriteError: If the write fails
        """
        now = utcnow()
        for rule in rules:
            if not rule.rule_id:
                rule.rule_id = generate_id()
            rule.created = now

        sql = INSERT_RULE_SQL + (UPSERT_RULE_SQL if upsert else "")
        try:
            with self.db.transaction() as conn:
                for rule in rules:
                    conn.execute(sql, _rule_to_params(rule))
        except sqlite3.IntegrityError as e:
            raise InstanceAlreadyExistsError(operation="save_rules", context={"underlying_error": str(e)}) from e
        except sqlite3.Error as e:
            raise StorageWriteError(operation="save_rules", underlying_error=str(e)) from e
        return rules

    def find_all(self, opts: FindOpts | None = None) -> list[Rule]:
        """
        List rules matching opts, ordered by id.

        Raises:
            StorageReadError: If the query fails
        """
        opts = opts or FindOpts()
        clauses: list[str] = []
        params: list[str] = []
        if opts.creator:
            clauses.append("creator = ?")
            params.append(opts.creator)
        if opts.source_tsuru_app:
            clauses.append("source_app = ?")
            params.append(opts.source_tsuru_app)
        if opts.source_tsuru_job:
            clauses.append("source_job = ?")
            params.append(opts.source_tsuru_job)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        try:
            with self.db.reading() as conn:
                rows = conn.execute(f"SELECT * FROM rules {where} ORDER BY rule_id", params).fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(operation="find_rules", underlying_error=str(e)) from e

        rules = [_row_to_rule(row) for row in rows]
        if opts.metadata:
            rules = [r for r in rules if _metadata_matches(r.metadata, opts.metadata)]
        return rules

    def delete(self, opts: DeleteOpts) -> int:
        """
        Soft-delete the rules selected by opts.

        Returns:
            Number of rules flagged as removed

        Raises:
            RuleNotFoundError: If no rule was changed, including when every
                match was already removed
            StorageWriteError: If the update fails
        """
        try:
            with self.db.transaction() as conn:
                if opts.rule_id:
                    rows = conn.execute(
                        "SELECT rule_id, metadata_json FROM rules WHERE rule_id = ? AND removed = 0",
                        (opts.rule_id,),
                    ).fetchall()
                else:
                    rows = conn.execute("SELECT rule_id, metadata_json FROM rules WHERE removed = 0").fetchall()
                ids = [
                    row["rule_id"]
                    for row in rows
                    if _metadata_matches(json.loads(row["metadata_json"]), opts.metadata)
                ]
                conn.executemany("UPDATE rules SET removed = 1 WHERE rule_id = ?", [(i,) for i in ids])
        except sqlite3.Error as e:
            raise StorageWriteError(operation="delete_rules", underlying_error=str(e)) from e
        if not ids:
            raise RuleNotFoundError(operation="delete_rules", rule_id=opts.rule_id)
        return len(ids)


# =============================================================================
# Row Mapping
# =============================================================================


def _metadata_matches(metadata: dict[str, str], wanted: dict[str, str]) -> bool:
    return all(metadata.get(k) == v for k, v in wanted.items())


def _rule_to_params(rule: Rule) -> tuple:
    source_app = rule.source.tsuru_app.app_name if rule.source.tsuru_app else None
    source_job = rule.source.tsuru_job.job_name if rule.source.tsuru_job else None
    return (
        rule.rule_id,
        rule.rule_name or None,
        rule.source.model_dump_json(by_alias=True, exclude_none=True),
        rule.destination.model_dump_json(by_alias=True, exclude_none=True),
        source_app or None,
        source_job or None,
        int(rule.removed),
        json.dumps(rule.metadata),
        to_iso(rule.created),
        rule.creator,
    )


def _row_to_rule(row: sqlite3.Row) -> Rule:
    return Rule(
        rule_id=row["rule_id"],
        rule_name=row["rule_name"] or "",
        source=RuleType.model_validate_json(row["source_json"]),
        destination=RuleType.model_validate_json(row["destination_json"]),
        removed=bool(row["removed"]),
        metadata=json.loads(row["metadata_json"]),
        created=from_iso(row["created"]),
        creator=row["creator"],
    )
