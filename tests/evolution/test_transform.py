"""Tests for DataTransformationService planning and execution."""

from __future__ import annotations

import pytest

from schemaspine.core.errors import InvalidConfigError, TransformationError, TransformationValidationError
from schemaspine.core.settings import SchemaSpineSettings
from schemaspine.evolution.transform import (
    DataTransformation,
    DataTransformationService,
    ExecuteOptions,
)


def transformation(**overrides) -> DataTransformation:
    data = {
        "source": {
            "table": "players_v1",
            "version": "1",
            "schema": {
                "columns": [
                    {"name": "id", "type": "INTEGER"},
                    {"name": "name", "type": "VARCHAR(50)"},
                    {"name": "chips", "type": "INTEGER"},
                ]
            },
        },
        "target": {
            "table": "players_v2",
            "version": "2",
            "schema": {
                "columns": [
                    {"name": "id", "type": "INTEGER"},
                    {"name": "username", "type": "VARCHAR(50)"},
                    {"name": "bankroll", "type": "INTEGER"},
                ]
            },
        },
        "mapping": [
            {"source": "id", "target": "id"},
            {"source": "name", "target": "username", "nullable": False},
            {"source": "chips", "target": "bankroll", "typeChange": "NUMERIC(12, 2)", "transform": "s.chips * 100"},
        ],
    }
    data.update(overrides)
    return DataTransformation.model_validate(data)


@pytest.fixture
def service(tm, settings) -> DataTransformationService:
    return DataTransformationService(tm, settings=settings)


class TestPlan:
    def test_schema_changes_and_insert_select(self, service):
        plan = service.plan(transformation())

        assert [s.sql for s in plan.schema_changes] == [
            "ALTER TABLE players_v2 ALTER COLUMN username SET NOT NULL",
            "ALTER TABLE players_v2 ALTER COLUMN bankroll TYPE NUMERIC(12, 2)",
        ]
        assert plan.schema_changes[0].description == "Set nullability of username to NOT NULL"
        (step,) = plan.data_steps
        assert step.sql == (
            "INSERT INTO players_v2 (id, username, bankroll)\n"
            "SELECT s.id, s.name, s.chips * 100\n"
            "FROM players_v1 s\n"
            "LIMIT {LIMIT} OFFSET {OFFSET}\n"
            "ON CONFLICT DO NOTHING"
        )

    def test_unchanged_type_emits_nothing(self, service):
        t = transformation(mapping=[{"source": "chips", "target": "bankroll", "type_change": "INTEGER"}])
        assert service.plan(t).schema_changes == []

    def test_nullable_true_drops_not_null(self, service):
        t = transformation(mapping=[{"source": "name", "target": "username", "nullable": True}])
        assert service.plan(t).schema_changes[0].sql.endswith("ALTER COLUMN username DROP NOT NULL")

    def test_unknown_target_column(self, service):
        t = transformation(mapping=[{"source": "name", "target": "nickname"}])
        with pytest.raises(TransformationError, match="Target column not found: nickname"):
            service.plan(t)

    def test_unknown_source_column_without_transform(self, service):
        t = transformation(mapping=[{"source": "handle", "target": "username"}])
        with pytest.raises(TransformationError, match="Source column not found: handle"):
            service.plan(t)

    def test_missing_table(self, service):
        t = transformation(source={"table": ""})
        with pytest.raises(TransformationError, match="Source and target must be provided"):
            service.plan(t)

    def test_unsafe_table_name(self, service):
        t = transformation(
            target={"table": "players_v2; DROP TABLE players", "schema": {"columns": []}},
            mapping=[],
        )
        with pytest.raises(InvalidConfigError) as exc:
            service.plan(t)
        assert exc.value.context.metadata["field"] == "target.table"

    def test_unsafe_column_name(self, service):
        column = "username) SELECT 1; --"
        t = transformation(
            target={"table": "players_v2", "schema": {"columns": [{"name": column, "type": "TEXT"}]}},
            mapping=[{"source": "name", "target": column}],
        )
        with pytest.raises(InvalidConfigError) as exc:
            service.plan(t)
        assert exc.value.context.metadata["field"] == "mapping[0].target"

    def test_unsafe_type_change(self, service):
        t = transformation(
            mapping=[{"source": "chips", "target": "bankroll", "type_change": "INTEGER; DROP TABLE x"}]
        )
        with pytest.raises(InvalidConfigError, match="Invalid column type"):
            service.plan(t)


class TestExecute:
    def test_dry_run_touches_nothing(self, service, db):
        outcome = service.execute(transformation(), ExecuteOptions(dry_run=True))
        assert outcome.executed is False
        assert len(outcome.plan.data_steps) == 1
        assert db.queries == []

    def test_schema_changes_then_batches(self, service, tm, db):
        db.on(r"^INSERT INTO players_v2", 10, 10, 3)

        outcome = service.execute(transformation(), ExecuteOptions(batch_size=10))

        assert outcome.executed
        assert (outcome.rows_moved, outcome.batches) == (23, 3)
        assert [q.sql.split("\n")[3] for q in db.matching(r"^INSERT INTO players_v2")] == [
            "LIMIT 10 OFFSET 0",
            "LIMIT 10 OFFSET 10",
            "LIMIT 10 OFFSET 20",
        ]
        assert db.statements[0].startswith("ALTER TABLE players_v2")
        assert len(tm.transactions) == 5

    def test_resume_from_offset_with_pause(self, tm, db):
        sleeps: list[float] = []
        db.on(r"^INSERT", 5, 0)
        service = DataTransformationService(
            tm, settings=SchemaSpineSettings(_env_file=None, batch_pause_ms=100), sleep=sleeps.append
        )
        t = transformation(mapping=[{"source": "id", "target": "id"}])
        service.execute(t, ExecuteOptions(batch_size=5, offset=50))
        assert [q.sql.split("\n")[3] for q in db.matching(r"^INSERT")] == [
            "LIMIT 5 OFFSET 50",
            "LIMIT 5 OFFSET 55",
        ]
        assert sleeps == [0.1]

    def test_warning_rule_is_collected(self, service, db):
        db.on(r"COUNT", [{"n": 2}])
        t = transformation(
            validation=[
                {
                    "name": "no_null_names",
                    "sql": "SELECT COUNT(*) AS n FROM players_v2",
                    "expected": {"n": 0},
                    "severity": "warning",
                }
            ]
        )
        outcome = service.execute(t, ExecuteOptions(validate=True))
        assert outcome.warnings == ["Validation warning: no_null_names"]

    def test_error_rule_raises(self, service, db):
        db.on(r"COUNT", [{"n": 2}])
        t = transformation(
            validation=[{"name": "row_counts", "sql": "SELECT COUNT(*) AS n FROM players_v2", "expected": {"n": 0}}]
        )
        with pytest.raises(TransformationValidationError, match="Validation failed: row_counts") as exc:
            service.execute(t, ExecuteOptions(validate=True))
        assert exc.value.errors == ["row_counts"]

    def test_rules_skipped_without_validate(self, service, db):
        t = transformation(validation=[{"name": "r", "sql": "SELECT COUNT(*) AS n", "expected": {"n": 0}}])
        service.execute(t)
        assert not db.executed(r"COUNT")
