"""Timestamp migration versions: ``YYYY.MM.DD.HHMM``."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, order=True)
class VersionComponents:
    year: int
    month: int
    day: int
    sequence: int


class MigrationVersioning:
    @staticmethod
    def generate_version(now: datetime | None = None) -> str:
        d = now or datetime.now()
        return f"{d.year}.{d.month:02d}.{d.day:02d}.{d.hour:02d}{d.minute:02d}"

    @staticmethod
    def parse_version(version: str) -> VersionComponents:
        """Split a version into its components.

        Raises:
            ValueError: Fewer than four dot-separated parts, or a non-numeric part
        """
        parts = str(version).split(".")
        if len(parts) < 4:
            raise ValueError(f"Invalid version format: {version}")
        try:
            year, month, day, sequence = (int(p) for p in parts[:4])
        except ValueError:
            raise ValueError(f"Invalid version format: {version}") from None
        return VersionComponents(year=year, month=month, day=day, sequence=sequence)

    @classmethod
    def compare_versions(cls, a: str, b: str) -> int:
        """Negative when ``a`` is older than ``b``, zero when equal, positive when newer."""
        va, vb = cls.parse_version(a), cls.parse_version(b)
        return (va > vb) - (va < vb)

    @classmethod
    def is_valid_version(cls, version: str) -> bool:
        try:
            cls.parse_version(version)
        except ValueError:
            return False
        return True


__all__ = ["MigrationVersioning", "VersionComponents"]
