"""
Tests for engagement and report persistence.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from pathlib import Path

import orjson
import pytest

from valreport.exceptions import StorageError
from valreport.storage import FileSystemRepository, InMemoryRepository, safe_filename
from valreport.types import Engagement, utc_now


@pytest.fixture
def fs_repository(temp_dir: Path) -> FileSystemRepository:
    return FileSystemRepository(temp_dir / "data", temp_dir / "output", max_bytes=1024)


class TestFileSystemRepository:
    """Test FileSystemRepository."""

    async def test_engagement_round_trip(
        self, fs_repository: FileSystemRepository, engagement: Engagement
    ) -> None:
        path = await fs_repository.save_engagement(engagement)

        assert path == fs_repository.data_dir / "engagements" / "eng-001.json"
        assert await fs_repository.get_engagement("eng-001") == engagement

    async def test_missing_engagement(self, fs_repository: FileSystemRepository) -> None:
        with pytest.raises(StorageError, match="Engagement not found: eng-404"):
            await fs_repository.get_engagement("eng-404")

    async def test_malformed_engagement(self, fs_repository: FileSystemRepository) -> None:
        path = fs_repository.engagements_dir / "eng-bad.json"
        path.parent.mkdir(parents=True)
        path.write_bytes(b"{not json")

        with pytest.raises(StorageError, match="Malformed engagement record"):
            await fs_repository.get_engagement("eng-bad")

    async def test_unsafe_engagement_id(self, fs_repository: FileSystemRepository) -> None:
        with pytest.raises(StorageError, match="Invalid engagement id"):
            await fs_repository.get_engagement("../../etc/passwd")

    async def test_read_file_relative_to_data_dir(self, fs_repository: FileSystemRepository) -> None:
        model = fs_repository.data_dir / "models" / "acme.xlsx"
        model.parent.mkdir(parents=True)
        model.write_bytes(b"xlsx")

        assert await fs_repository.read_file("models/acme.xlsx") == b"xlsx"

    async def test_read_file_size_cap(self, fs_repository: FileSystemRepository, temp_dir: Path) -> None:
        big = temp_dir / "big.xlsx"
        big.write_bytes(b"x" * 2048)

        with pytest.raises(StorageError, match="File exceeds size limit"):
            await fs_repository.read_file(str(big))

    async def test_read_missing_file(self, fs_repository: FileSystemRepository) -> None:
        with pytest.raises(StorageError, match="File not found"):
            await fs_repository.read_file("models/none.xlsx")

    async def test_save_report_versions(
        self, fs_repository: FileSystemRepository, engagement: Engagement
    ) -> None:
        first = await fs_repository.save_report(engagement, b"# v1", "Acme - 409A.md")
        second = await fs_repository.save_report(engagement, b"# v2", "Acme - 409A.md")

        assert (first.version, second.version) == (1, 2)
        assert Path(second.file_path).name == "v2 - Acme - 409A.md"
        assert Path(second.file_path).read_bytes() == b"# v2"
        assert second.expires_at - second.created_at == timedelta(days=30)

        listed = await fs_repository.list_reports("eng-001")
        assert [r.id for r in listed] == [first.id, second.id]
        index = orjson.loads((fs_repository.reports_dir / "eng-001" / "reports.json").read_bytes())
        assert len(index) == 2

    async def test_concurrent_saves_get_distinct_versions(
        self, fs_repository: FileSystemRepository, engagement: Engagement
    ) -> None:
        reports = await asyncio.gather(
            *[fs_repository.save_report(engagement, f"# {i}".encode(), "report.md") for i in range(5)]
        )

        assert sorted(r.version for r in reports) == [1, 2, 3, 4, 5]
        listed = await fs_repository.list_reports("eng-001")
        assert len(listed) == 5
        assert len({r.file_path for r in listed}) == 5

    async def test_delete_expired_reports(
        self, fs_repository: FileSystemRepository, engagement: Engagement
    ) -> None:
        report = await fs_repository.save_report(engagement, b"# v1", "report.md")

        assert await fs_repository.delete_expired_reports() == 0

        deleted = await fs_repository.delete_expired_reports(now=utc_now() + timedelta(days=31))

        assert deleted == 1
        assert not Path(report.file_path).exists()
        assert await fs_repository.list_reports("eng-001") == []

    async def test_find_outlook(self, fs_repository: FileSystemRepository) -> None:
        fs_repository.outlooks_dir.mkdir(parents=True)
        (fs_repository.outlooks_dir / "Q4-2025.md").write_text("  Q4 outlook.\n", encoding="utf-8")
        (fs_repository.outlooks_dir / "Q1-2026.txt").write_text("Q1 outlook.", encoding="utf-8")

        assert await fs_repository.find(4, 2025) == "Q4 outlook."
        assert await fs_repository.find(1, 2026) == "Q1 outlook."
        assert await fs_repository.find(2, 2026) is None


class TestInMemoryRepository:
    """Test InMemoryRepository."""

    async def test_round_trip(self, engagement: Engagement) -> None:
        repository = InMemoryRepository(
            engagements={"eng-001": engagement},
            files={"models/acme.xlsx": b"xlsx"},
            outlooks={(4, 2025): "Outlook"},
        )

        assert await repository.get_engagement("eng-001") == engagement
        assert await repository.read_file("models/acme.xlsx") == b"xlsx"
        assert await repository.find(4, 2025) == "Outlook"
        assert await repository.find(3, 2025) is None

        report = await repository.save_report(engagement, b"data", "Acme: report?.md")

        assert report.file_path == "reports/eng-001/v1 - Acme report.md"
        assert repository.artifacts[report.file_path] == b"data"
        assert await repository.list_reports("eng-001") == [report]

    async def test_missing_entries(self) -> None:
        repository = InMemoryRepository()

        with pytest.raises(StorageError):
            await repository.get_engagement("eng-001")
        with pytest.raises(StorageError):
            await repository.read_file("missing.xlsx")


def test_safe_filename() -> None:
    assert safe_filename("Acme/Robotics: v1?.md") == "AcmeRobotics v1.md"
    assert safe_filename("???") == "report"
