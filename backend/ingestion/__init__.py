"""
Ingestion package.

Normalizes periodic WMS exports (CSV / Excel / JSON) into snapshot fact
tables:
  - inventory_snapshot   → inventory_snapshots
  - transaction_history  → transaction_snapshots
  - adjustment_log       → adjustment_snapshots
  - cycle_count_results  → cycle_count_snapshots

Usage:
    from ingestion.service import ingest_upload

    result = await ingest_upload(db, "export.csv", content, data_type="inventory_snapshot")
"""

from ingestion.mappings import COLUMN_MAPPINGS, DataType, resolve_mapping
from ingestion.parsers import check_content, parse_records
from ingestion.service import IngestionResult, ingest_upload, list_ingestions

__all__ = [
    "COLUMN_MAPPINGS",
    "DataType",
    "resolve_mapping",
    "check_content",
    "parse_records",
    "IngestionResult",
    "ingest_upload",
    "list_ingestions",
]
