"""
Ready-made migrations for common zero-downtime changes.

Each factory method returns a complete :class:`ZeroDowntimeMigration`
(stages, rollback, validators) that can be passed straight to
:meth:`SchemaEvolutionManager.execute_zero_downtime_migration`.

Templates:
    ===============  =====================================================
    add_column       add column; rollback drops it if no data was written
    add_index        CREATE INDEX CONCURRENTLY with retry
    rename_column    new column, copy, compatibility view, cleanup after 72h
    partition_table  partitioned copy, swap, batched catch-up copy
    add_foreign_key  orphan check, constraint, orphan validator
    ===============  =====================================================

Tags:
    schema-evolution, templates, zero-downtime, schema-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Literal

from schemaspine.core.sql import validate_identifier, validate_identifiers, validate_type_name
from schemaspine.evolution.builder import INDEX_RETRY_POLICY, render_default
from schemaspine.evolution.models import (
    BackwardCompatibilitySetup,
    CompatibilityObject,
    CustomValidator,
    DataMigrationPlan,
    DataOperation,
    EvolutionStage,
    EvolutionStep,
    RollbackConfiguration,
    RollbackStep,
    ValidationConfiguration,
    ZeroDowntimeMigration,
)

ReferentialAction = Literal["CASCADE", "SET NULL", "RESTRICT", "NO ACTION"]


def _column_exists(table: str, column: str) -> str:
    return (
        "SELECT COUNT(*) AS count FROM information_schema.columns "
        f"WHERE table_name = '{table}' AND column_name = '{column}'"
    )


class MigrationTemplateFactory:
    @staticmethod
    def add_column(
        version: str,
        table: str,
        column: str,
        data_type: str,
        *,
        nullable: bool = True,
        default_value: object = None,
        maintain_compatibility: bool = False,
    ) -> ZeroDowntimeMigration:
        validate_identifier(table, field_name="table")
        validate_identifier(column, field_name="column")
        validate_type_name(data_type)

        sql = f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {column} {data_type}"
        if not nullable:
            sql += " NOT NULL"
        if default_value is not None:
            sql += f" DEFAULT {render_default(default_value)}"

        exists = (
            "SELECT 1 FROM information_schema.columns "
            f"WHERE table_name = '{table}' AND column_name = '{column}'"
        )
        return ZeroDowntimeMigration(
            version=version,
            description=f"Add column {column} to {table}",
            stages=[
                EvolutionStage(
                    name="add_column",
                    description=f"Add {column} column",
                    steps=[EvolutionStep(sql=sql, condition=f"SELECT 1 WHERE NOT EXISTS ({exists})")],
                )
            ],
            backward_compatibility=(
                BackwardCompatibilitySetup(deprecation_warnings=[f"Column {column} added to {table}"])
                if maintain_compatibility
                else None
            ),
            rollback=RollbackConfiguration(
                steps=[
                    RollbackStep(
                        sql=f"ALTER TABLE {table} DROP COLUMN IF EXISTS {column}",
                        condition=f"SELECT 1 WHERE EXISTS ({exists})",
                    )
                ],
                safety_checks=[f"SELECT COUNT(*) AS count FROM {table} WHERE {column} IS NOT NULL"],
            ),
            validation=ValidationConfiguration(
                validators=[
                    CustomValidator(
                        name="column_exists",
                        sql=_column_exists(table, column),
                        expected_result={"count": 1},
                        error_message=f"Column {column} was not created in {table}",
                    )
                ],
                data_integrity_checks=[f"SELECT COUNT(*) AS total_rows FROM {table}"],
            ),
        )

    @staticmethod
    def add_index(
        version: str,
        table: str,
        columns: list[str],
        *,
        index_name: str | None = None,
        unique: bool = False,
        where: str | None = None,
    ) -> ZeroDowntimeMigration:
        validate_identifier(table, field_name="table")
        validate_identifiers(columns, field_name="columns")
        name = index_name or f"idx_{table.replace('.', '_')}_{'_'.join(columns)}"
        validate_identifier(name, field_name="index_name")

        sql = (
            f"CREATE {'UNIQUE ' if unique else ''}INDEX CONCURRENTLY IF NOT EXISTS {name} "
            f"ON {table} ({', '.join(columns)})"
        )
        if where:
            sql += f" WHERE {where}"

        return ZeroDowntimeMigration(
            version=version,
            description=f"Add index {name} on {table}({', '.join(columns)})",
            stages=[
                EvolutionStage(
                    name="create_index",
                    description="Create index concurrently",
                    steps=[EvolutionStep(sql=sql, retry_policy=INDEX_RETRY_POLICY)],
                )
            ],
            rollback=RollbackConfiguration(steps=[RollbackStep(sql=f"DROP INDEX CONCURRENTLY IF EXISTS {name}")]),
            validation=ValidationConfiguration(
                validators=[
                    CustomValidator(
                        name="index_exists",
                        sql=(
                            "SELECT COUNT(*) AS count FROM pg_indexes "
                            f"WHERE tablename = '{table}' AND indexname = '{name}'"
                        ),
                        expected_result={"count": 1},
                        error_message=f"Index {name} was not created",
                    )
                ]
            ),
        )

    @staticmethod
    def rename_column(
        version: str,
        table: str,
        old_column: str,
        new_column: str,
        data_type: str,
        *,
        cleanup_delay_hours: float = 72,
    ) -> ZeroDowntimeMigration:
        """Expand/contract rename: both names stay readable until cleanup."""
        validate_identifiers([table, old_column, new_column], field_name="rename_column")
        validate_type_name(data_type)

        view = f"{table}_compat"
        view_sql = f"CREATE OR REPLACE VIEW {view} AS SELECT *, {new_column} AS {old_column} FROM {table}"
        return ZeroDowntimeMigration(
            version=version,
            description=f"Rename column {old_column} to {new_column} in {table}",
            stages=[
                EvolutionStage(
                    name="add_new_column",
                    description="Add new column with the same type",
                    steps=[EvolutionStep(sql=f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {new_column} {data_type}")],
                ),
                EvolutionStage(
                    name="copy_data",
                    description="Copy data from old to new column",
                    steps=[
                        EvolutionStep(
                            sql=f"UPDATE {table} SET {new_column} = {old_column} WHERE {new_column} IS NULL"
                        )
                    ],
                    can_rollback=False,
                ),
                EvolutionStage(
                    name="create_compatibility_view",
                    description="Create view for backward compatibility",
                    steps=[EvolutionStep(sql=view_sql)],
                ),
            ],
            backward_compatibility=BackwardCompatibilitySetup(
                compatibility_views=[CompatibilityObject(name=view, sql=view_sql)],
                deprecation_warnings=[
                    f"Column {old_column} in {table} has been renamed to {new_column}. "
                    "Please update your queries."
                ],
            ),
            rollback=RollbackConfiguration(
                steps=[
                    RollbackStep(sql=f"ALTER TABLE {table} DROP COLUMN IF EXISTS {new_column}"),
                    RollbackStep(sql=f"DROP VIEW IF EXISTS {view}"),
                ]
            ),
            cleanup_delay=cleanup_delay_hours,
            validation=ValidationConfiguration(
                validators=[
                    CustomValidator(
                        name="new_column_exists",
                        sql=_column_exists(table, new_column),
                        expected_result={"count": 1},
                        error_message=f"New column {new_column} was not created",
                    ),
                    CustomValidator(
                        name="data_copied",
                        sql=(
                            f"SELECT COUNT(*) AS count FROM {table} "
                            f"WHERE {old_column} IS DISTINCT FROM {new_column}"
                        ),
                        expected_result={"count": 0},
                        error_message="Data was not copied correctly between columns",
                    ),
                ],
                data_integrity_checks=[f"SELECT COUNT(*) AS total_rows FROM {table}"],
            ),
        )

    @staticmethod
    def partition_table(
        version: str,
        table: str,
        partition_type: Literal["range", "list", "hash"],
        partition_column: str,
        partitions: dict[str, str],
        *,
        batch_size: int = 10_000,
    ) -> ZeroDowntimeMigration:
        """
        Args:
            partitions: Partition table name → ``FOR VALUES`` clause,
                e.g. ``{"events_2025": "FROM ('2025-01-01') TO ('2026-01-01')"}``
        """
        validate_identifiers([table, partition_column, *partitions], field_name="partition_table")
        staging, old = f"{table}_partitioned", f"{table}_old"

        return ZeroDowntimeMigration(
            version=version,
            description=f"Partition table {table} by {partition_type}",
            stages=[
                EvolutionStage(
                    name="create_partitioned_table",
                    description="Create new partitioned table structure",
                    steps=[
                        EvolutionStep(
                            sql=(
                                f"CREATE TABLE {staging} (LIKE {table} INCLUDING ALL) "
                                f"PARTITION BY {partition_type.upper()} ({partition_column})"
                            )
                        )
                    ],
                ),
                EvolutionStage(
                    name="create_partitions",
                    description="Create initial partitions",
                    steps=[
                        EvolutionStep(sql=f"CREATE TABLE {name} PARTITION OF {staging} FOR VALUES {bounds}")
                        for name, bounds in partitions.items()
                    ],
                ),
                EvolutionStage(
                    name="migrate_data",
                    description="Migrate data to partitioned table",
                    steps=[EvolutionStep(sql=f"INSERT INTO {staging} SELECT * FROM {table}")],
                    can_rollback=False,
                ),
                EvolutionStage(
                    name="swap_tables",
                    description="Swap tables",
                    steps=[
                        EvolutionStep(sql=f"ALTER TABLE {table} RENAME TO {old}"),
                        EvolutionStep(sql=f"ALTER TABLE {staging} RENAME TO {table}"),
                    ],
                ),
            ],
            data_migration=DataMigrationPlan(
                operations=[
                    DataOperation(
                        sql=(
                            f"INSERT INTO {table} SELECT * FROM {old} "
                            "LIMIT {LIMIT} OFFSET {OFFSET} ON CONFLICT DO NOTHING"
                        ),
                        description="Batch copy rows written during the swap",
                    )
                ],
                batch_size=batch_size,
            ),
            rollback=RollbackConfiguration(
                steps=[
                    RollbackStep(sql=f"DROP TABLE IF EXISTS {staging}"),
                    RollbackStep(sql=f"ALTER TABLE {old} RENAME TO {table}"),
                    RollbackStep(sql=f"ALTER TABLE {table} RENAME TO {staging}"),
                ]
            ),
            validation=ValidationConfiguration(
                validators=[
                    CustomValidator(
                        name="row_count_match",
                        sql=(
                            f"SELECT (SELECT COUNT(*) FROM {old}) AS old_count, "
                            f"(SELECT COUNT(*) FROM {table}) AS new_count"
                        ),
                        expected_result={"old_count": "new_count"},
                        error_message="Row counts do not match after partitioning",
                    )
                ],
                data_integrity_checks=[
                    f"SELECT COUNT(*) AS total_rows FROM {table}",
                    f"SELECT COUNT(DISTINCT {partition_column}) AS partition_values FROM {table}",
                ],
            ),
        )

    @staticmethod
    def add_foreign_key(
        version: str,
        source_table: str,
        source_column: str,
        target_table: str,
        target_column: str,
        *,
        constraint_name: str | None = None,
        on_delete: ReferentialAction | None = None,
        on_update: ReferentialAction | None = None,
        deferrable: bool = False,
    ) -> ZeroDowntimeMigration:
        validate_identifiers(
            [source_table, source_column, target_table, target_column], field_name="add_foreign_key"
        )
        name = constraint_name or f"fk_{source_table}_{source_column}"
        validate_identifier(name, field_name="constraint_name")

        orphans = (
            f"FROM {source_table} s LEFT JOIN {target_table} t ON s.{source_column} = t.{target_column} "
            f"WHERE s.{source_column} IS NOT NULL AND t.{target_column} IS NULL"
        )
        constraint = (
            f"ALTER TABLE {source_table} ADD CONSTRAINT {name} "
            f"FOREIGN KEY ({source_column}) REFERENCES {target_table}({target_column})"
        )
        if on_delete:
            constraint += f" ON DELETE {on_delete}"
        if on_update:
            constraint += f" ON UPDATE {on_update}"
        if deferrable:
            constraint += " DEFERRABLE"

        return ZeroDowntimeMigration(
            version=version,
            description=f"Add foreign key constraint {name}",
            stages=[
                EvolutionStage(
                    name="validate_existing_data",
                    description="Validate existing data meets constraint",
                    steps=[
                        EvolutionStep(
                            sql=(
                                "DO $$ BEGIN "
                                f"IF EXISTS (SELECT 1 {orphans}) THEN "
                                "RAISE EXCEPTION 'Existing data violates foreign key constraint'; "
                                "END IF; END $$"
                            )
                        )
                    ],
                    can_rollback=False,
                ),
                EvolutionStage(
                    name="add_constraint",
                    description="Add foreign key constraint",
                    steps=[EvolutionStep(sql=constraint)],
                ),
            ],
            rollback=RollbackConfiguration(
                steps=[RollbackStep(sql=f"ALTER TABLE {source_table} DROP CONSTRAINT IF EXISTS {name}")]
            ),
            validation=ValidationConfiguration(
                validators=[
                    CustomValidator(
                        name="constraint_exists",
                        sql=(
                            "SELECT COUNT(*) AS count FROM information_schema.table_constraints "
                            f"WHERE table_name = '{source_table}' AND constraint_name = '{name}' "
                            "AND constraint_type = 'FOREIGN KEY'"
                        ),
                        expected_result={"count": 1},
                        error_message=f"Foreign key constraint {name} was not created",
                    ),
                    CustomValidator(
                        name="no_orphaned_records",
                        sql=f"SELECT COUNT(*) AS count {orphans}",
                        expected_result={"count": 0},
                        error_message="Orphaned records found after foreign key creation",
                    ),
                ]
            ),
        )


__all__ = ["MigrationTemplateFactory"]
