"""
Static analysis of migration SQL.

:class:`PlanAnalyzer` parses every forward statement of a plan with sqlparse
and classifies it.  Comments are dropped and string literals are masked
before matching, so ``'DROP TABLE'`` inside a literal or a ``-- DROP`` comment
is never reported.

Findings:
    ==================  ==========================================================
    breaking change     DROP TABLE, DROP COLUMN, RENAME, column TYPE change,
                        SET NOT NULL without a compatibility shim
    data loss           DROP TABLE, DROP COLUMN, TRUNCATE, DELETE without WHERE
    performance         CREATE INDEX without CONCURRENTLY, TYPE change (rewrite),
                        UPDATE without WHERE, VACUUM FULL / CLUSTER,
                        LOCK TABLE ... ACCESS EXCLUSIVE
    risk                ADD COLUMN ... NOT NULL without DEFAULT
    ==================  ==========================================================

Rollback steps are not analyzed: undo SQL is expected to be destructive.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

import sqlparse
from sqlparse import tokens as T

from schemaspine.evolution.models import ZeroDowntimeMigration


class FindingKind(str, Enum):
    BREAKING_CHANGE = "breaking_change"
    DATA_LOSS = "data_loss"
    PERFORMANCE = "performance"
    RISK = "risk"


@dataclass(frozen=True)
class Finding:
    kind: FindingKind
    message: str
    sql: str


@dataclass
class PlanAnalysis:
    findings: list[Finding] = field(default_factory=list)
    rollbackable: bool = True

    def of(self, kind: FindingKind) -> list[Finding]:
        return [f for f in self.findings if f.kind == kind]

    @property
    def breaking_changes(self) -> list[str]:
        return [f.message for f in self.of(FindingKind.BREAKING_CHANGE)]

    @property
    def data_loss(self) -> list[str]:
        return [f.message for f in self.of(FindingKind.DATA_LOSS)]

    @property
    def performance(self) -> list[str]:
        return [f.message for f in self.of(FindingKind.PERFORMANCE)]

    @property
    def risks(self) -> list[str]:
        return [f.message for f in self.of(FindingKind.RISK)]


@dataclass(frozen=True)
class _Statement:
    kind: str
    text: str
    original: str


_NAME = r"[\w\"$.]+"
_DROP_TABLE = re.compile(rf"^DROP TABLE (IF EXISTS )?(?P<name>{_NAME})")
_DROP_COLUMN = re.compile(
    rf"^ALTER TABLE (IF EXISTS )?(ONLY )?(?P<table>{_NAME}) .*\bDROP (COLUMN )?(IF EXISTS )?"
    rf"(?!CONSTRAINT\b|NOT NULL\b|NOT\b|DEFAULT\b|IDENTITY\b|EXPRESSION\b)(?P<column>{_NAME})"
)
_RENAME = re.compile(
    rf"^ALTER TABLE (IF EXISTS )?(ONLY )?(?P<table>{_NAME}) .*\bRENAME (?!CONSTRAINT\b)"
)
_TYPE_CHANGE = re.compile(
    rf"^ALTER TABLE (IF EXISTS )?(ONLY )?(?P<table>{_NAME}) .*\bALTER (COLUMN )?(?P<column>{_NAME}) (SET DATA )?TYPE\b"
)
_SET_NOT_NULL = re.compile(
    rf"^ALTER TABLE (IF EXISTS )?(ONLY )?(?P<table>{_NAME}) .*\bALTER (COLUMN )?(?P<column>{_NAME}) SET NOT NULL\b"
)
_ADD_NOT_NULL = re.compile(
    rf"^ALTER TABLE (IF EXISTS )?(ONLY )?(?P<table>{_NAME}) "
    rf".*\bADD (COLUMN )?(IF NOT EXISTS )?(?P<column>{_NAME}) .*\bNOT NULL\b"
)
_CREATE_INDEX = re.compile(r"^CREATE (UNIQUE )?INDEX\b")
_TRUNCATE = re.compile(rf"^TRUNCATE (TABLE )?(ONLY )?(?P<name>{_NAME})")
_DELETE = re.compile(rf"^DELETE FROM (ONLY )?(?P<name>{_NAME})")
_UPDATE = re.compile(rf"^UPDATE (ONLY )?(?P<name>{_NAME})")
_REWRITE = re.compile(r"^(VACUUM FULL|CLUSTER)\b")
_EXCLUSIVE_LOCK = re.compile(r"^LOCK (TABLE )?.*\bACCESS EXCLUSIVE\b")
_WHERE = re.compile(r"\bWHERE\b")


def _normalize(sql: str) -> list[_Statement]:
    """Split ``sql`` into statements with comments removed and literals masked."""
    statements = []
    for stmt in sqlparse.parse(sql):
        words = []
        for tok in stmt.flatten():
            if tok.is_whitespace or tok.ttype in T.Comment:
                continue
            if tok.ttype in T.Literal.String:
                words.append("'?'")
                continue
            words.append(tok.value.upper())
        text = re.sub(r"\s+", " ", " ".join(words)).strip().rstrip(";").strip()
        if text:
            statements.append(_Statement(kind=stmt.get_type(), text=text, original=str(stmt).strip()))
    return statements


class PlanAnalyzer:
    """Classifies the forward SQL of a migration."""

    def analyze_sql(self, sql: str, *, has_compatibility_shims: bool = False) -> list[Finding]:
        findings: list[Finding] = []
        for stmt in _normalize(sql):
            findings.extend(self._classify(stmt, has_compatibility_shims))
        return findings

    def analyze(self, migration: ZeroDowntimeMigration) -> PlanAnalysis:
        shims = bool(migration.backward_compatibility and migration.backward_compatibility.has_shims)
        analysis = PlanAnalysis(rollbackable=migration.rollback_available)
        for sql in migration.all_statements():
            analysis.findings.extend(self.analyze_sql(sql, has_compatibility_shims=shims))
        return analysis

    def _classify(self, stmt: _Statement, shims: bool) -> list[Finding]:
        text = stmt.text
        out: list[Finding] = []

        def add(kind: FindingKind, message: str) -> None:
            out.append(Finding(kind=kind, message=message, sql=stmt.original))

        if m := _DROP_TABLE.match(text):
            add(FindingKind.BREAKING_CHANGE, f"drops table {m['name'].lower()}")
            add(FindingKind.DATA_LOSS, f"DROP TABLE {m['name'].lower()}")
            return out
        if m := _TRUNCATE.match(text):
            add(FindingKind.DATA_LOSS, f"TRUNCATE {m['name'].lower()}")
            return out
        if m := _DELETE.match(text):
            if not _WHERE.search(text):
                add(FindingKind.DATA_LOSS, f"DELETE without WHERE on {m['name'].lower()}")
            return out
        if m := _UPDATE.match(text):
            if not _WHERE.search(text):
                add(FindingKind.PERFORMANCE, f"full-table UPDATE on {m['name'].lower()}")
            return out
        if _CREATE_INDEX.match(text):
            if " CONCURRENTLY " not in f" {text} ":
                add(FindingKind.PERFORMANCE, "CREATE INDEX without CONCURRENTLY blocks writes")
            return out
        if m := _REWRITE.match(text):
            add(FindingKind.PERFORMANCE, f"{m[1]} rewrites the table")
            return out
        if _EXCLUSIVE_LOCK.match(text):
            add(FindingKind.PERFORMANCE, "ACCESS EXCLUSIVE lock blocks all access")
            return out

        if not text.startswith("ALTER TABLE"):
            return out

        if m := _DROP_COLUMN.match(text):
            column = f"{m['table']}.{m['column']}".lower()
            add(FindingKind.BREAKING_CHANGE, f"drops column {column}")
            add(FindingKind.DATA_LOSS, f"DROP COLUMN {column}")
        if m := _RENAME.match(text):
            add(FindingKind.BREAKING_CHANGE, f"renames objects in {m['table'].lower()}")
        if m := _TYPE_CHANGE.match(text):
            column = f"{m['table']}.{m['column']}".lower()
            add(FindingKind.BREAKING_CHANGE, f"changes type of {column}")
            add(FindingKind.PERFORMANCE, f"type change on {column} may rewrite the table")
        if (m := _SET_NOT_NULL.match(text)) and not shims:
            add(FindingKind.BREAKING_CHANGE, f"sets NOT NULL on {m['table']}.{m['column']}".lower())
        if (m := _ADD_NOT_NULL.match(text)) and " DEFAULT " not in f" {text} ":
            add(
                FindingKind.RISK,
                f"adds NOT NULL column {m['table']}.{m['column']} without DEFAULT".lower(),
            )
        return out


__all__ = ["FindingKind", "Finding", "PlanAnalysis", "PlanAnalyzer"]
