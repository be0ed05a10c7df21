"""
Tests for the Ingestion Normalizer.

Covers:
  - Extension / content checks
  - Column mapping presets and pass-through
  - Lenient vs strict numeric coercion
  - End-to-end upload into snapshot tables
"""

import io
import json

import pytest
from openpyxl import Workbook
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from core.errors import IngestionParseError, UnsupportedFileError, UploadTooLargeError
from db.models import CycleCountSnapshot, IngestionRecord, InventorySnapshot
from ingestion.loader import ROW_BUILDERS, compute_variance
from ingestion.mappings import DataType, apply_mapping, resolve_mapping
from ingestion.normalize import coerce_number, normalize_records
from ingestion.parsers import check_content, parse_records
from ingestion.service import ingest_upload, list_ingestions, parse_data_type


def _xlsx_bytes(rows: list[list]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


# ── Content check ──────────────────────────────────────────────────────


class TestCheckContent:
    def test_csv_accepted(self):
        assert check_content("export.csv", b"sku,location,quantity\nA,B,1\n") == ".csv"

    def test_extension_is_case_insensitive(self):
        assert check_content("EXPORT.CSV", b"sku\nA\n") == ".csv"

    def test_unknown_extension_rejected(self):
        with pytest.raises(UnsupportedFileError, match="not supported"):
            check_content("export.txt", b"sku\n")

    def test_empty_file_rejected(self):
        with pytest.raises(UnsupportedFileError, match="empty"):
            check_content("export.csv", b"")

    def test_xlsx_requires_zip_magic(self):
        with pytest.raises(UnsupportedFileError, match="xlsx"):
            check_content("export.xlsx", b"sku,location\n")

    def test_xlsx_with_zip_magic_accepted(self):
        assert check_content("export.xlsx", _xlsx_bytes([["sku"], ["A"]])) == ".xlsx"

    def test_xls_requires_ole2_magic(self):
        with pytest.raises(UnsupportedFileError, match="xls"):
            check_content("export.xls", b"PK\x03\x04rest")

    def test_invalid_json_rejected(self):
        with pytest.raises(UnsupportedFileError, match="JSON"):
            check_content("export.json", b"{not json")

    def test_binary_csv_rejected(self):
        with pytest.raises(UnsupportedFileError):
            check_content("export.csv", b"sku\x00\x01\x02")

    def test_non_utf8_csv_rejected(self):
        with pytest.raises(UnsupportedFileError, match="UTF-8"):
            check_content("export.csv", "sku\nÄ\n".encode("latin-1"))


# ── Parsing ────────────────────────────────────────────────────────────


class TestParseRecords:
    def test_csv_values_stay_text(self):
        records = parse_records("e.csv", b"sku,quantity\n00123,007\n")
        assert records == [{"sku": "00123", "quantity": "007"}]

    def test_blank_cells_dropped(self):
        records = parse_records("e.csv", b"sku,lot\nA,\n")
        assert records == [{"sku": "A"}]

    def test_json_list(self):
        content = json.dumps([{"sku": "A", "quantity": 3}]).encode()
        assert parse_records("e.json", content) == [{"sku": "A", "quantity": 3}]

    def test_json_records_envelope(self):
        content = json.dumps({"records": [{"sku": "A"}, {"sku": "B"}]}).encode()
        assert [r["sku"] for r in parse_records("e.json", content)] == ["A", "B"]

    def test_json_scalar_is_parse_error(self):
        with pytest.raises(IngestionParseError):
            parse_records("e.json", b"42")

    def test_xlsx(self):
        content = _xlsx_bytes([["sku", "location", "quantity"], ["A", "L1", 5]])
        records = parse_records("e.xlsx", content)
        assert records[0]["sku"] == "A"
        assert records[0]["location"] == "L1"


# ── Mappings ───────────────────────────────────────────────────────────


class TestMappings:
    def test_unknown_mapping_falls_back_to_generic(self):
        assert resolve_mapping("nonexistent", DataType.INVENTORY_SNAPSHOT) == resolve_mapping(
            "generic", DataType.INVENTORY_SNAPSHOT
        )

    def test_canonical_columns_pass_through(self):
        mapping = resolve_mapping("generic", DataType.INVENTORY_SNAPSHOT)
        mapped = apply_mapping(
            {"sku": "A", "location_code": "L1", "quantity_on_hand": "4"}, mapping, DataType.INVENTORY_SNAPSHOT
        )
        assert mapped == {"sku": "A", "location_code": "L1", "quantity_on_hand": "4"}

    def test_generic_aliases(self):
        mapping = resolve_mapping("generic", DataType.INVENTORY_SNAPSHOT)
        mapped = apply_mapping({"sku": "A", "location": "L1", "quantityOnHand": "4"}, mapping, DataType.INVENTORY_SNAPSHOT)
        assert mapped["location_code"] == "L1"
        assert mapped["quantity_on_hand"] == "4"

    def test_missing_source_columns_omitted(self):
        mapping = resolve_mapping("generic", DataType.INVENTORY_SNAPSHOT)
        mapped = apply_mapping({"sku": "A"}, mapping, DataType.INVENTORY_SNAPSHOT)
        assert "lot_number" not in mapped

    def test_unmapped_columns_dropped(self):
        mapping = resolve_mapping("generic", DataType.INVENTORY_SNAPSHOT)
        mapped = apply_mapping({"sku": "A", "colour": "blue"}, mapping, DataType.INVENTORY_SNAPSHOT)
        assert "colour" not in mapped

    def test_parse_data_type_default_and_unknown(self):
        assert parse_data_type(None) == DataType.INVENTORY_SNAPSHOT
        with pytest.raises(Exception, match="data_type"):
            parse_data_type("pallet_labels")


# ── Normalization ──────────────────────────────────────────────────────


class TestNormalize:
    MAPPING = resolve_mapping("generic", DataType.INVENTORY_SNAPSHOT)

    def test_coerce_number(self):
        assert coerce_number("1,234.5") == 1234.5
        assert coerce_number(" 7 ") == 7.0
        assert coerce_number("abc") is None
        assert coerce_number("nan") is None

    def test_missing_required_field_is_row_error(self):
        result = normalize_records([{"sku": "A", "location": "L1"}], DataType.INVENTORY_SNAPSHOT, self.MAPPING)
        assert result.rows == []
        assert result.errors[0].row == 1
        assert "quantity_on_hand" in result.errors[0].message

    def test_lenient_mode_coerces_to_zero(self):
        records = [{"sku": "A", "location": "L1", "quantity": "twelve"}]
        result = normalize_records(records, DataType.INVENTORY_SNAPSHOT, self.MAPPING, strict=False)
        assert result.errors == []
        assert result.coerced == 1
        assert result.rows[0].fields["quantity_on_hand"] == 0.0

    def test_strict_mode_rejects_row(self):
        records = [{"sku": "A", "location": "L1", "quantity": "twelve"}]
        result = normalize_records(records, DataType.INVENTORY_SNAPSHOT, self.MAPPING, strict=True)
        assert result.rows == []
        assert "quantity_on_hand" in result.errors[0].message

    def test_unparseable_date_is_row_error(self):
        records = [{"sku": "A", "location": "L1", "quantity": "1", "date": "not a date"}]
        result = normalize_records(records, DataType.INVENTORY_SNAPSHOT, self.MAPPING)
        assert result.rows == []
        assert "snapshot_date" in result.errors[0].message

    def test_raw_row_kept(self):
        records = [{"sku": "A", "location": "L1", "quantity": "3", "colour": "blue"}]
        result = normalize_records(records, DataType.INVENTORY_SNAPSHOT, self.MAPPING)
        assert result.rows[0].raw["colour"] == "blue"

    def test_numeric_json_ids_become_text(self):
        records = [{"sku": 12345, "location": 7.0, "quantity": 3}]
        result = normalize_records(records, DataType.INVENTORY_SNAPSHOT, self.MAPPING)
        fields = result.rows[0].fields
        assert fields["sku"] == "12345"
        assert fields["location_code"] == "7"
        assert fields["quantity_on_hand"] == 3.0

    def test_nested_value_is_row_error(self):
        records = [
            {"sku": "A", "location": "L1", "quantity": 1},
            {"sku": ["X"], "location": "L1", "quantity": 2},
            {"sku": "B", "location": {"aisle": 4}, "quantity": 3},
        ]
        result = normalize_records(records, DataType.INVENTORY_SNAPSHOT, self.MAPPING)
        assert [r.fields["sku"] for r in result.rows] == ["A"]
        assert [(e.row, e.message) for e in result.errors] == [
            (2, "Nested value for sku"),
            (3, "Nested value for location_code"),
        ]


class TestComputeVariance:
    def test_shortage(self):
        assert compute_variance(100, 70) == (-30, -30.0)

    def test_zero_system_quantity(self):
        assert compute_variance(0, 5) == (5, 0.0)


# ── End to end ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestIngestUpload:
    async def test_inventory_csv(self, test_db, tmp_path):
        content = b"sku,location,quantityOnHand\nX,L,-5\nY,L,12\n"
        result = await ingest_upload(test_db, "snap.csv", content, data_type="inventory_snapshot", upload_dir=tmp_path)

        assert result.records_processed == 2
        assert result.records_with_errors == 0

        record = await test_db.get(IngestionRecord, result.ingestion_id)
        assert record.status == "COMPLETED"
        assert record.record_count == 2
        assert list(tmp_path.rglob("*.csv"))

        snaps = (await test_db.execute(select(InventorySnapshot).order_by(InventorySnapshot.sku))).scalars().all()
        assert [(s.sku, s.location_code, s.quantity_on_hand) for s in snaps] == [("X", "L", -5.0), ("Y", "L", 12.0)]

    async def test_row_errors_reported(self, test_db, tmp_path):
        content = b"sku,location,quantity\nA,L1,3\n,L2,4\n"
        result = await ingest_upload(test_db, "snap.csv", content, upload_dir=tmp_path)
        assert result.records_processed == 1
        assert result.records_with_errors == 1
        assert result.errors[0]["row"] == 2

    async def test_cycle_counts_get_variance(self, test_db, tmp_path):
        content = b"sku,location,systemQty,countedQty\nA,L1,100,70\n"
        await ingest_upload(test_db, "counts.csv", content, data_type="cycle_count_results", upload_dir=tmp_path)
        count = await test_db.scalar(select(CycleCountSnapshot))
        assert count.variance == -30
        assert count.variance_percent == -30.0

    async def test_batches_cover_all_rows(self, test_db, tmp_path, monkeypatch):
        from core.config import get_settings

        monkeypatch.setattr(get_settings(), "ingestion_batch_size", 2)
        lines = ["sku,location,quantity"] + [f"S{i},L1,{i}" for i in range(5)]
        result = await ingest_upload(test_db, "snap.csv", "\n".join(lines).encode(), upload_dir=tmp_path)
        assert result.records_processed == 5
        assert await test_db.scalar(select(func.count()).select_from(InventorySnapshot)) == 5

    async def test_parse_failure_marks_record_failed(self, test_db, tmp_path):
        with pytest.raises(IngestionParseError):
            await ingest_upload(test_db, "bad.json", b'"just a string"', upload_dir=tmp_path)

        records = await list_ingestions(test_db)
        assert records[0].status == "FAILED"
        assert await test_db.scalar(select(func.count()).select_from(InventorySnapshot)) == 0

    async def test_mismatched_content_rejected_before_storing(self, test_db, tmp_path):
        with pytest.raises(UnsupportedFileError):
            await ingest_upload(test_db, "snap.xlsx", b"sku,location\n", upload_dir=tmp_path)
        assert await list_ingestions(test_db) == []

    async def test_too_large(self, test_db, tmp_path, monkeypatch):
        from core.config import get_settings

        monkeypatch.setattr(get_settings(), "max_upload_bytes", 10)
        with pytest.raises(UploadTooLargeError):
            await ingest_upload(test_db, "snap.csv", b"sku,location,quantity\nA,B,1\n", upload_dir=tmp_path)

    async def test_history_filters(self, test_db, tmp_path):
        await ingest_upload(test_db, "a.csv", b"sku,location,quantity\nA,L,1\n", upload_dir=tmp_path)
        await ingest_upload(
            test_db,
            "b.csv",
            b"sku,location,adjustmentQty,reason\nA,L,-2,damaged\n",
            data_type="adjustment_log",
            upload_dir=tmp_path,
        )
        adjustments = await list_ingestions(test_db, data_type="adjustment_log")
        assert [r.filename for r in adjustments] == ["b.csv"]

    async def test_json_with_nested_value_loads_the_valid_rows(self, test_db, tmp_path):
        content = json.dumps(
            [
                {"sku": "A", "location": "L1", "quantity": 4},
                {"sku": ["X"], "location": "L2", "quantity": 5},
                {"sku": 900123, "location": "L3", "quantity": 6},
            ]
        ).encode()

        result = await ingest_upload(test_db, "snap.json", content, upload_dir=tmp_path)

        assert result.records_processed == 2
        assert result.records_with_errors == 1
        assert result.errors[0] == {"row": 2, "message": "Nested value for sku"}
        skus = (await test_db.execute(select(InventorySnapshot.sku).order_by(InventorySnapshot.sku))).scalars().all()
        assert skus == ["900123", "A"]

    async def test_failed_batch_keeps_count_of_committed_rows(self, test_db, tmp_path, monkeypatch):
        from core.config import get_settings

        build = ROW_BUILDERS[DataType.INVENTORY_SNAPSHOT]

        def build_without_sku_for_bad_rows(ingestion_id, row, now):
            snapshot = build(ingestion_id, row, now)
            if snapshot.sku == "BAD":
                snapshot.sku = None
            return snapshot

        monkeypatch.setitem(ROW_BUILDERS, DataType.INVENTORY_SNAPSHOT, build_without_sku_for_bad_rows)
        monkeypatch.setattr(get_settings(), "ingestion_batch_size", 1)
        content = b"sku,location,quantity\nA,L1,1\nBAD,L2,2\nC,L3,3\n"

        with pytest.raises(IntegrityError):
            await ingest_upload(test_db, "snap.csv", content, upload_dir=tmp_path)

        assert await test_db.scalar(select(func.count()).select_from(InventorySnapshot)) == 1
        record = await test_db.scalar(select(IngestionRecord))
        assert record.status == "FAILED"
        assert record.record_count == 1
        assert record.error_message.startswith("Load failed after 1 rows: IntegrityError")
        assert "INSERT" not in record.error_message
