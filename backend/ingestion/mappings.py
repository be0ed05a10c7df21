"""
WMS Export Column Mappings

Each supported WMS names its export columns differently. A mapping table
translates source column → canonical field per data type:

    COLUMN_MAPPINGS[mapping_type][data_type] = {"On Hand Qty": "quantity_on_hand", ...}

Columns that already carry a canonical field name pass through untouched,
so a generic export written with our own field names needs no mapping.
Source columns absent from a row are simply omitted; nothing is
defaulted at this stage.
"""

from enum import Enum
from typing import Any


class DataType(str, Enum):
    """Kinds of WMS export the normalizer accepts."""

    INVENTORY_SNAPSHOT = "inventory_snapshot"
    TRANSACTION_HISTORY = "transaction_history"
    ADJUSTMENT_LOG = "adjustment_log"
    CYCLE_COUNT_RESULTS = "cycle_count_results"


DEFAULT_MAPPING_TYPE = "generic"


# ── Canonical fields per data type ─────────────────────────────────────────

CANONICAL_FIELDS: dict[DataType, tuple[str, ...]] = {
    DataType.INVENTORY_SNAPSHOT: (
        "sku",
        "location_code",
        "quantity_on_hand",
        "quantity_allocated",
        "quantity_available",
        "lot_number",
        "snapshot_date",
    ),
    DataType.TRANSACTION_HISTORY: (
        "transaction_id",
        "transaction_type",
        "sku",
        "from_location",
        "to_location",
        "quantity",
        "user_id",
        "transaction_date",
    ),
    DataType.ADJUSTMENT_LOG: (
        "sku",
        "location_code",
        "adjustment_qty",
        "reason",
        "reason_code",
        "user_id",
        "adjustment_date",
    ),
    DataType.CYCLE_COUNT_RESULTS: (
        "sku",
        "location_code",
        "system_qty",
        "counted_qty",
        "counter_id",
        "count_date",
    ),
}

REQUIRED_FIELDS: dict[DataType, tuple[str, ...]] = {
    DataType.INVENTORY_SNAPSHOT: ("sku", "location_code", "quantity_on_hand"),
    DataType.TRANSACTION_HISTORY: ("transaction_type", "sku", "quantity", "transaction_date"),
    DataType.ADJUSTMENT_LOG: ("sku", "location_code", "adjustment_qty", "reason"),
    DataType.CYCLE_COUNT_RESULTS: ("sku", "location_code", "counted_qty", "system_qty"),
}

NUMERIC_FIELDS: dict[DataType, tuple[str, ...]] = {
    DataType.INVENTORY_SNAPSHOT: ("quantity_on_hand", "quantity_allocated", "quantity_available"),
    DataType.TRANSACTION_HISTORY: ("quantity",),
    DataType.ADJUSTMENT_LOG: ("adjustment_qty",),
    DataType.CYCLE_COUNT_RESULTS: ("system_qty", "counted_qty"),
}

DATE_FIELDS: dict[DataType, str] = {
    DataType.INVENTORY_SNAPSHOT: "snapshot_date",
    DataType.TRANSACTION_HISTORY: "transaction_date",
    DataType.ADJUSTMENT_LOG: "adjustment_date",
    DataType.CYCLE_COUNT_RESULTS: "count_date",
}


# ── Source WMS mapping tables ──────────────────────────────────────────────

MANHATTAN_MAPPINGS = {
    DataType.INVENTORY_SNAPSHOT: {
        "SKU": "sku",
        "Location ID": "location_code",
        "On Hand Qty": "quantity_on_hand",
        "Allocated Qty": "quantity_allocated",
        "Available Qty": "quantity_available",
        "Lot Number": "lot_number",
        "Snapshot Date": "snapshot_date",
    },
    DataType.TRANSACTION_HISTORY: {
        "Transaction ID": "transaction_id",
        "Transaction Type": "transaction_type",
        "SKU": "sku",
        "From Location": "from_location",
        "To Location": "to_location",
        "Quantity": "quantity",
        "User ID": "user_id",
        "Transaction Date": "transaction_date",
    },
    DataType.ADJUSTMENT_LOG: {
        "SKU": "sku",
        "Location ID": "location_code",
        "Adjustment Qty": "adjustment_qty",
        "Reason": "reason",
        "Reason Code": "reason_code",
        "User ID": "user_id",
        "Adjustment Date": "adjustment_date",
    },
    DataType.CYCLE_COUNT_RESULTS: {
        "SKU": "sku",
        "Location ID": "location_code",
        "System Qty": "system_qty",
        "Counted Qty": "counted_qty",
        "Counter ID": "counter_id",
        "Count Date": "count_date",
    },
}

# SAP EWM / WM table field names (LQUA, LTAP, ISEG)
SAP_MAPPINGS = {
    DataType.INVENTORY_SNAPSHOT: {
        "MATNR": "sku",
        "LGPLA": "location_code",
        "VERME": "quantity_on_hand",
        "EINME": "quantity_allocated",
        "CHARG": "lot_number",
    },
    DataType.TRANSACTION_HISTORY: {
        "TANUM": "transaction_id",
        "BWLVS": "transaction_type",
        "MATNR": "sku",
        "VLPLA": "from_location",
        "NLPLA": "to_location",
        "VSOLM": "quantity",
        "BNAME": "user_id",
        "BDATU": "transaction_date",
    },
    DataType.ADJUSTMENT_LOG: {
        "MATNR": "sku",
        "LGPLA": "location_code",
        "MENGE": "adjustment_qty",
        "GRTXT": "reason",
        "GRUND": "reason_code",
        "USNAM": "user_id",
        "BUDAT": "adjustment_date",
    },
    DataType.CYCLE_COUNT_RESULTS: {
        "MATNR": "sku",
        "LGPLA": "location_code",
        "BUCHM": "system_qty",
        "MENGE": "counted_qty",
        "USNAZ": "counter_id",
        "ZLDAT": "count_date",
    },
}

GENERIC_MAPPINGS = {
    DataType.INVENTORY_SNAPSHOT: {
        "location": "location_code",
        "locationCode": "location_code",
        "quantity": "quantity_on_hand",
        "quantityOnHand": "quantity_on_hand",
        "on_hand": "quantity_on_hand",
        "allocated": "quantity_allocated",
        "quantityAllocated": "quantity_allocated",
        "available": "quantity_available",
        "quantityAvailable": "quantity_available",
        "lot": "lot_number",
        "lotNumber": "lot_number",
        "date": "snapshot_date",
        "snapshotDate": "snapshot_date",
    },
    DataType.TRANSACTION_HISTORY: {
        "transactionId": "transaction_id",
        "id": "transaction_id",
        "type": "transaction_type",
        "transactionType": "transaction_type",
        "fromLocation": "from_location",
        "toLocation": "to_location",
        "qty": "quantity",
        "userId": "user_id",
        "user": "user_id",
        "transactionDate": "transaction_date",
        "date": "transaction_date",
    },
    DataType.ADJUSTMENT_LOG: {
        "location": "location_code",
        "locationCode": "location_code",
        "quantity": "adjustment_qty",
        "adjustmentQty": "adjustment_qty",
        "reasonCode": "reason_code",
        "userId": "user_id",
        "user": "user_id",
        "adjustmentDate": "adjustment_date",
        "date": "adjustment_date",
    },
    DataType.CYCLE_COUNT_RESULTS: {
        "location": "location_code",
        "locationCode": "location_code",
        "systemQty": "system_qty",
        "system": "system_qty",
        "countedQty": "counted_qty",
        "counted": "counted_qty",
        "counterId": "counter_id",
        "counter": "counter_id",
        "countDate": "count_date",
        "date": "count_date",
    },
}

COLUMN_MAPPINGS: dict[str, dict[DataType, dict[str, str]]] = {
    "manhattan": MANHATTAN_MAPPINGS,
    "sap": SAP_MAPPINGS,
    "generic": GENERIC_MAPPINGS,
}


def resolve_mapping(mapping_type: str | None, data_type: DataType) -> dict[str, str]:
    """Mapping table for a source WMS; unknown mapping types fall back to generic."""
    tables = COLUMN_MAPPINGS.get((mapping_type or "").lower(), GENERIC_MAPPINGS)
    return tables.get(data_type) or GENERIC_MAPPINGS[data_type]


def apply_mapping(record: dict[str, Any], mapping: dict[str, str], data_type: DataType) -> dict[str, Any]:
    """
    Rename source columns to canonical fields.

    Mapped columns win over pass-through canonical columns when both are
    present. Columns that are neither mapped nor canonical are dropped
    here; the loader keeps the untouched source row as raw_data.
    """
    canonical = set(CANONICAL_FIELDS[data_type])
    row = {str(column).strip(): value for column, value in record.items()}
    mapped: dict[str, Any] = {column: value for column, value in row.items() if column in canonical}

    for source, target in mapping.items():
        if source in row:
            mapped[target] = row[source]

    return mapped


def describe_mappings() -> dict[str, Any]:
    """Serializable view of the mapping catalogue for the API."""
    return {
        "data_types": [dt.value for dt in DataType],
        "required_fields": {dt.value: list(fields) for dt, fields in REQUIRED_FIELDS.items()},
        "mappings": {
            name: {dt.value: dict(table) for dt, table in tables.items()}
            for name, tables in COLUMN_MAPPINGS.items()
        },
    }
