"""
Engagement and report persistence.

FileSystemRepository layout:
- DATA_DIR/engagements/<id>.json: engagement records (orjson)
- DATA_DIR/economic_outlooks/Q<n>-<year>.md|.txt: stored quarterly outlooks
- OUTPUT_DIR/reports/<engagement_id>/: rendered artifacts plus reports.json,
  the versioned report records for that engagement
"""

from __future__ import annotations

import asyncio
import re
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol

import orjson

from valreport.config import get_settings
from valreport.exceptions import StorageError
from valreport.logging import get_logger
from valreport.types import Engagement, GeneratedReport, generate_id, utc_now

logger = get_logger(__name__)

REPORT_RETENTION = timedelta(days=30)
OUTLOOK_EXTENSIONS = (".md", ".txt")
_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9 ._-]")
_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


def safe_filename(name: str) -> str:
    """Strip characters that are unsafe in file names."""
    cleaned = _UNSAFE_FILENAME.sub("", name).strip()
    return cleaned or "report"


class EngagementRepository(Protocol):
    """Loads engagements and inputs, stores generated artifacts."""

    async def get_engagement(self, engagement_id: str) -> Engagement:
        ...

    async def read_file(self, path: str) -> bytes:
        ...

    async def save_report(
        self, engagement: Engagement, data: bytes, filename: str
    ) -> GeneratedReport:
        ...

    async def list_reports(self, engagement_id: str) -> list[GeneratedReport]:
        ...


class EconomicOutlookStore(Protocol):
    """Previously stored quarterly economic outlook text."""

    async def find(self, quarter: int, year: int) -> str | None:
        ...


def _report_from_dict(data: dict) -> GeneratedReport:
    return GeneratedReport(
        id=data["id"],
        engagement_id=data["engagement_id"],
        file_path=data["file_path"],
        version=int(data["version"]),
        created_at=datetime.fromisoformat(data["created_at"]),
        expires_at=datetime.fromisoformat(data["expires_at"]),
    )


class FileSystemRepository:
    """Repository and outlook store backed by plain files.

    File access runs in worker threads so a large model read or report
    write does not stall other jobs on the event loop. Report index updates
    are serialised by a lock.
    """

    def __init__(
        self,
        data_dir: Path | str | None = None,
        output_dir: Path | str | None = None,
        max_bytes: int | None = None,
    ) -> None:
        settings = get_settings()
        self.data_dir = Path(data_dir) if data_dir is not None else settings.DATA_DIR
        self.output_dir = Path(output_dir) if output_dir is not None else settings.OUTPUT_DIR
        self.max_bytes = max_bytes or settings.MAX_UPLOAD_BYTES
        self.engagements_dir = self.data_dir / "engagements"
        self.outlooks_dir = self.data_dir / "economic_outlooks"
        self.reports_dir = self.output_dir / "reports"
        self._index_lock = threading.Lock()

    def _engagement_path(self, engagement_id: str) -> Path:
        if not _SAFE_ID.match(engagement_id):
            raise StorageError("Invalid engagement id", {"engagement_id": engagement_id})
        return self.engagements_dir / f"{engagement_id}.json"

    def _report_dir(self, engagement_id: str) -> Path:
        if not _SAFE_ID.match(engagement_id):
            raise StorageError("Invalid engagement id", {"engagement_id": engagement_id})
        return self.reports_dir / engagement_id

    # ------------------------------------------------------------------
    # Engagements
    # ------------------------------------------------------------------

    async def get_engagement(self, engagement_id: str) -> Engagement:
        """Load an engagement record.

        Raises:
            StorageError: If the record is missing or malformed.
        """
        return await asyncio.to_thread(self._read_engagement, engagement_id)

    def _read_engagement(self, engagement_id: str) -> Engagement:
        path = self._engagement_path(engagement_id)
        if not path.is_file():
            raise StorageError(
                f"Engagement not found: {engagement_id}", {"path": str(path)}
            )
        try:
            return Engagement.from_dict(orjson.loads(path.read_bytes()))
        except (orjson.JSONDecodeError, KeyError, ValueError) as e:
            raise StorageError(f"Malformed engagement record: {e}", {"path": str(path)}) from e

    async def save_engagement(self, engagement: Engagement) -> Path:
        path = self._engagement_path(engagement.id)
        payload = orjson.dumps(engagement.to_dict(), option=orjson.OPT_INDENT_2)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(payload)

        await asyncio.to_thread(_write)
        return path

    async def read_file(self, path: str) -> bytes:
        """Read an input file, resolving relative paths against DATA_DIR.

        Raises:
            StorageError: If the file is missing or over the size cap.
        """
        return await asyncio.to_thread(self._read_input, path)

    def _read_input(self, path: str) -> bytes:
        resolved = Path(path)
        if not resolved.is_absolute():
            resolved = self.data_dir / resolved
        if not resolved.is_file():
            raise StorageError("File not found", {"path": str(resolved)})

        size = resolved.stat().st_size
        if size > self.max_bytes:
            raise StorageError(
                "File exceeds size limit",
                {"path": str(resolved), "size": size, "max_bytes": self.max_bytes},
            )
        return resolved.read_bytes()

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def _load_records(self, engagement_id: str) -> list[GeneratedReport]:
        index = self._report_dir(engagement_id) / "reports.json"
        if not index.is_file():
            return []
        try:
            return [_report_from_dict(item) for item in orjson.loads(index.read_bytes())]
        except (orjson.JSONDecodeError, KeyError, ValueError) as e:
            raise StorageError(f"Malformed report index: {e}", {"path": str(index)}) from e

    def _write_records(self, engagement_id: str, records: list[GeneratedReport]) -> None:
        index = self._report_dir(engagement_id) / "reports.json"
        index.parent.mkdir(parents=True, exist_ok=True)
        index.write_bytes(
            orjson.dumps([r.to_dict() for r in records], option=orjson.OPT_INDENT_2)
        )

    async def save_report(
        self, engagement: Engagement, data: bytes, filename: str
    ) -> GeneratedReport:
        """Write a rendered artifact and append a versioned record."""
        report = await asyncio.to_thread(self._write_report, engagement.id, data, filename)
        logger.info(
            "Saved report",
            engagement_id=engagement.id,
            version=report.version,
            path=report.file_path,
            size=len(data),
        )
        return report

    def _write_report(self, engagement_id: str, data: bytes, filename: str) -> GeneratedReport:
        with self._index_lock:
            records = self._load_records(engagement_id)
            version = len(records) + 1

            report_dir = self._report_dir(engagement_id)
            report_dir.mkdir(parents=True, exist_ok=True)
            path = report_dir / f"v{version} - {safe_filename(filename)}"
            try:
                path.write_bytes(data)
            except OSError as e:
                raise StorageError(f"Failed to write report: {e}", {"path": str(path)}) from e

            created_at = utc_now()
            report = GeneratedReport(
                id=generate_id("rpt"),
                engagement_id=engagement_id,
                file_path=str(path),
                version=version,
                created_at=created_at,
                expires_at=created_at + REPORT_RETENTION,
            )
            records.append(report)
            self._write_records(engagement_id, records)
        return report

    async def list_reports(self, engagement_id: str) -> list[GeneratedReport]:
        return await asyncio.to_thread(self._load_records, engagement_id)

    async def delete_expired_reports(self, now: datetime | None = None) -> int:
        """Delete artifacts and records whose retention has passed."""
        deleted = await asyncio.to_thread(self._delete_expired, now or utc_now())
        if deleted:
            logger.info("Deleted expired reports", count=deleted)
        return deleted

    def _delete_expired(self, now: datetime) -> int:
        if not self.reports_dir.is_dir():
            return 0

        deleted = 0
        with self._index_lock:
            for report_dir in self.reports_dir.iterdir():
                if not report_dir.is_dir():
                    continue
                records = self._load_records(report_dir.name)
                kept = []
                for record in records:
                    if record.expires_at < now:
                        Path(record.file_path).unlink(missing_ok=True)
                        deleted += 1
                    else:
                        kept.append(record)
                if len(kept) != len(records):
                    self._write_records(report_dir.name, kept)
        return deleted

    # ------------------------------------------------------------------
    # Economic outlooks
    # ------------------------------------------------------------------

    async def find(self, quarter: int, year: int) -> str | None:
        return await asyncio.to_thread(self._read_outlook, quarter, year)

    def _read_outlook(self, quarter: int, year: int) -> str | None:
        for ext in OUTLOOK_EXTENSIONS:
            path = self.outlooks_dir / f"Q{quarter}-{year}{ext}"
            if path.is_file():
                text = path.read_text(encoding="utf-8").strip()
                return text or None
        return None


class InMemoryRepository:
    """Repository and outlook store held in dictionaries."""

    def __init__(
        self,
        engagements: dict[str, Engagement] | None = None,
        files: dict[str, bytes] | None = None,
        outlooks: dict[tuple[int, int], str] | None = None,
    ) -> None:
        self.engagements = dict(engagements or {})
        self.files = dict(files or {})
        self.outlooks = dict(outlooks or {})
        self.artifacts: dict[str, bytes] = {}
        self.reports: dict[str, list[GeneratedReport]] = {}

    def add_engagement(self, engagement: Engagement) -> None:
        self.engagements[engagement.id] = engagement

    async def get_engagement(self, engagement_id: str) -> Engagement:
        try:
            return self.engagements[engagement_id]
        except KeyError:
            raise StorageError(f"Engagement not found: {engagement_id}") from None

    async def read_file(self, path: str) -> bytes:
        try:
            return self.files[path]
        except KeyError:
            raise StorageError("File not found", {"path": path}) from None

    async def save_report(
        self, engagement: Engagement, data: bytes, filename: str
    ) -> GeneratedReport:
        records = self.reports.setdefault(engagement.id, [])
        version = len(records) + 1
        path = f"reports/{engagement.id}/v{version} - {safe_filename(filename)}"
        self.artifacts[path] = data
        created_at = utc_now()
        report = GeneratedReport(
            id=generate_id("rpt"),
            engagement_id=engagement.id,
            file_path=path,
            version=version,
            created_at=created_at,
            expires_at=created_at + REPORT_RETENTION,
        )
        records.append(report)
        return report

    async def list_reports(self, engagement_id: str) -> list[GeneratedReport]:
        return list(self.reports.get(engagement_id, []))

    async def find(self, quarter: int, year: int) -> str | None:
        return self.outlooks.get((quarter, year))
