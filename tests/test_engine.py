"""Tests for the operator-facing SnapshotEngine."""

import json
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from db_snapshot.config.models import RetentionPolicy, SnapshotSettings
from db_snapshot.engine import SnapshotEngine, format_bytes
from db_snapshot.errors import InvalidSnapshotNameError, OperationInProgressError


def _engine(db, directory: Path, **kwargs) -> SnapshotEngine:
    settings = kwargs.pop("settings", SnapshotSettings(compress=False))
    return SnapshotEngine(
        db,
        db,
        directory,
        target_key=f"test://{uuid.uuid4().hex}",
        settings=settings,
        **kwargs,
    )


class TestFormatBytes:
    @pytest.mark.parametrize(
        "size,expected",
        [
            (0, "0 Bytes"),
            (512, "512 Bytes"),
            (1024, "1 KB"),
            (1536, "1.5 KB"),
            (1_048_576, "1 MB"),
            (5_347_737, "5.1 MB"),
            (1024**3 * 2, "2 GB"),
            (1024**4 * 3, "3 TB"),
            (1024**5, "1024 TB"),
        ],
    )
    def test_format(self, size: int, expected: str) -> None:
        assert format_bytes(size) == expected


class TestCreateAndList:
    @pytest.mark.asyncio
    async def test_create_snapshot_payload(self, shop_db, snapshot_dir: Path) -> None:
        engine = _engine(shop_db, snapshot_dir)
        created = await engine.create_snapshot()

        assert set(created) == {
            "filename",
            "size",
            "sizeFormatted",
            "tableCount",
            "totalRows",
            "isComplete",
            "failedTables",
        }
        assert created["tableCount"] == 2
        assert created["totalRows"] == 5
        assert created["isComplete"] is True
        assert created["size"] == (snapshot_dir / created["filename"]).stat().st_size

    @pytest.mark.asyncio
    async def test_list_snapshots_payload(self, shop_db, snapshot_dir: Path) -> None:
        engine = _engine(shop_db, snapshot_dir)
        created = await engine.create_snapshot()
        listed = await engine.list_snapshots()

        assert len(listed) == 1
        entry = listed[0]
        assert entry["filename"] == created["filename"]
        assert entry["isComplete"] is True
        assert entry["tableCount"] == 2
        assert entry["totalRows"] == 5
        assert entry["backupType"] == "complete"
        assert datetime.fromisoformat(entry["createdAt"]).tzinfo is not None
        assert "error" not in entry

    @pytest.mark.asyncio
    async def test_total_size(self, shop_db, snapshot_dir: Path) -> None:
        engine = _engine(shop_db, snapshot_dir)
        created = await engine.create_snapshot()
        total = await engine.total_size()
        assert total["totalSize"] == created["size"]
        assert total["totalSizeFormatted"] == format_bytes(created["size"])

    @pytest.mark.asyncio
    async def test_catalog_stats(self, shop_db, snapshot_dir: Path) -> None:
        engine = _engine(shop_db, snapshot_dir)
        full = await engine.create_snapshot()
        schema = await engine.create_snapshot(mode="schemaOnly")
        stats = await engine.catalog_stats()

        assert stats["totalBackups"] == 2
        assert stats["totalSize"] == full["size"] + schema["size"]
        assert stats["latestRestorable"] == full["filename"]
        assert datetime.fromisoformat(stats["lastBackup"]) >= datetime.fromisoformat(
            stats["oldestBackup"]
        )

    @pytest.mark.asyncio
    async def test_catalog_stats_empty(self, snapshot_dir: Path, make_db) -> None:
        stats = await _engine(make_db(), snapshot_dir).catalog_stats()
        assert stats["totalBackups"] == 0
        assert stats["lastBackup"] is None
        assert stats["latestRestorable"] is None

    @pytest.mark.asyncio
    async def test_preview_payload(self, shop_db, snapshot_dir: Path) -> None:
        engine = _engine(shop_db, snapshot_dir)
        created = await engine.create_snapshot()
        preview = await engine.preview_snapshot(created["filename"], max_bytes=32)

        assert preview["metadata"]["totalRows"] == 5
        assert {t["name"]: t["rowCount"] for t in preview["tablesSummary"]} == {
            "orders": 2,
            "users": 3,
        }
        assert preview["truncated"] is True
        assert len(preview["truncatedContent"]) <= 32

    @pytest.mark.asyncio
    async def test_preview_and_delete_reject_traversal(self, shop_db, snapshot_dir: Path) -> None:
        engine = _engine(shop_db, snapshot_dir)
        with pytest.raises(InvalidSnapshotNameError):
            await engine.preview_snapshot("../../etc/passwd", 100)
        with pytest.raises(InvalidSnapshotNameError):
            await engine.delete_snapshot("..\\secrets")

    @pytest.mark.asyncio
    async def test_delete_snapshot(self, shop_db, snapshot_dir: Path) -> None:
        engine = _engine(shop_db, snapshot_dir)
        created = await engine.create_snapshot()
        assert await engine.delete_snapshot(created["filename"]) is True
        assert await engine.delete_snapshot(created["filename"]) is False


class TestRestore:
    @pytest.mark.asyncio
    async def test_restore_payload(self, shop_db, snapshot_dir: Path) -> None:
        engine = _engine(shop_db, snapshot_dir)
        created = await engine.create_snapshot()
        shop_db.fail_replace["orders"] = 1

        result = await engine.restore(created["filename"])

        assert result["success"] is False
        assert result["safetyBackupFilename"].startswith("pre_restore_")
        assert result["tablesRestored"] == 1
        assert result["rowsRestored"] == 3
        assert result["errors"][0]["table"] == "orders"
        assert set(result["errors"][0]) == {"table", "message"}
        assert result["cancelled"] is False
        assert "integrity" not in result

    @pytest.mark.asyncio
    async def test_validate_after_restore(self, shop_db, snapshot_dir: Path) -> None:
        engine = _engine(
            shop_db,
            snapshot_dir,
            settings=SnapshotSettings(compress=False, validate_after_restore=True),
        )
        created = await engine.create_snapshot()
        result = await engine.restore(created["filename"])

        assert result["success"] is True
        assert result["integrity"]["status"] == "passed"

    @pytest.mark.asyncio
    async def test_second_mutating_operation_rejected(self, shop_db, snapshot_dir: Path) -> None:
        engine = _engine(shop_db, snapshot_dir)
        created = await engine.create_snapshot()

        with engine.guard.acquire("restore"):
            with pytest.raises(OperationInProgressError):
                await engine.restore(created["filename"])
            with pytest.raises(OperationInProgressError):
                await engine.apply_retention()
            with pytest.raises(OperationInProgressError):
                await engine.create_snapshot()
            with pytest.raises(OperationInProgressError):
                await engine.delete_snapshot(created["filename"])
            # Read-only operations are not guarded
            assert len(await engine.list_snapshots()) == 1

        assert shop_db.replace_calls == []


class TestRetentionAndValidation:
    @pytest.mark.asyncio
    async def test_apply_retention_zero_keeps_latest(self, shop_db, snapshot_dir: Path) -> None:
        engine = _engine(shop_db, snapshot_dir)
        created = await engine.create_snapshot()

        result = await engine.apply_retention(retention_days=0)

        assert result["deletedCount"] == 0
        assert result["deletedBytesFormatted"] == "0 Bytes"
        assert result["retentionDays"] == 0
        assert (snapshot_dir / created["filename"]).exists()

    @pytest.mark.asyncio
    async def test_apply_retention_uses_engine_policy(self, shop_db, snapshot_dir: Path) -> None:
        engine = _engine(shop_db, snapshot_dir, retention=RetentionPolicy(retention_days=7))
        first = await engine.create_snapshot()
        await engine.create_snapshot()
        # Backdate the first artifact; retention reads the metadata timestamp
        old = datetime.now(timezone.utc) - timedelta(days=30)
        path = snapshot_dir / first["filename"]
        metadata_line, rest = path.read_text().split("\n", 1)
        metadata = json.loads(metadata_line)
        metadata["timestampISO"] = old.isoformat()
        path.write_text(json.dumps(metadata) + "\n" + rest)

        result = await engine.apply_retention()

        assert result["retentionDays"] == 7
        assert result["deletedFiles"] == [first["filename"]]

    @pytest.mark.asyncio
    async def test_validate_integrity_payload(self, shop_db, snapshot_dir: Path) -> None:
        engine = _engine(shop_db, snapshot_dir)
        report = await engine.validate_integrity()
        assert report["status"] == "passed"
        assert report["results"] == [
            {"check": "FK: orders.user_id -> users.id", "passed": True, "issues": 0}
        ]


class TestContextManager:
    @pytest.mark.asyncio
    async def test_exit_closes_adapter(self, shop_db, snapshot_dir: Path) -> None:
        async with _engine(shop_db, snapshot_dir) as engine:
            assert isinstance(engine, SnapshotEngine)
        assert shop_db.closed is True
