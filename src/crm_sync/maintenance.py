"""
One-shot maintenance commands over the whole CRM.

These run outside the sync cycle and walk every record once. Per-record
failures are logged and the walk continues.
"""

import asyncio
import logging
from typing import Dict, List, Sequence

from src.crm_sync.analyzers.classifier import GroqClassifier
from src.crm_sync.base import RecordStore
from src.crm_sync.errors import CrmSyncError
from src.crm_sync.schema import FieldMap, field_for_label

logger = logging.getLogger(__name__)

# Engine-owned fields the research pass never fills on its own
NON_RESEARCHABLE_FIELDS = {
    "email", "last_contact_date", "attributed_member", "calendar_link",
    "meet_link", "needs_response", "meeting_time",
}


def resolve_field_labels(labels: Sequence[str], field_map: FieldMap) -> List[str]:
    """
    Turn user-supplied column labels into bound canonical fields.

    Raises:
        CrmSyncError: a label matches no field, or its field has no column
    """
    fields = []
    for label in labels:
        field_name = field_for_label(label, field_map)
        if field_name is None:
            raise CrmSyncError(f"Unknown column: {label}")
        if not field_map.has(field_name):
            raise CrmSyncError(f"Column for '{label}' ({field_name}) is not present in the sheet")
        if field_name not in fields:
            fields.append(field_name)
    return fields


async def answer_question(store: RecordStore, classifier: GroqClassifier, question: str) -> str:
    """Answer a free-text question about the CRM."""
    records = await store.read_all_records()
    logger.info(f"Answering question over {len(records)} record(s)")
    return await classifier.answer_question(records, question)


async def fill_empty_fields(store: RecordStore, classifier: GroqClassifier,
                            field_map: FieldMap, item_delay: float = 0.0) -> Dict[str, int]:
    """
    Research values for empty cells. Cells that already hold a value are
    never overwritten.

    Returns:
        Counters: records updated, skipped (nothing to fill) and failed
    """
    researchable = [
        field_name for field_name in field_map.columns
        if field_name not in NON_RESEARCHABLE_FIELDS
    ]
    counts = {"updated": 0, "skipped": 0, "errors": 0}

    for record in await store.read_all_records():
        empty_fields = [field_name for field_name in researchable if not record.get(field_name).strip()]
        if not empty_fields or not (record.name or record.email):
            counts["skipped"] += 1
            continue

        label = record.name or record.email
        logger.info(f"Filling {', '.join(empty_fields)} for {label}")
        try:
            research = await classifier.research_fields(record, empty_fields)
            updates = {
                field_name: value for field_name, value in research.items()
                if field_name in empty_fields and value
            }
            if updates:
                await store.update_record(record.row_index, updates)
                counts["updated"] += 1
                logger.info(f"Updated {label}: {', '.join(updates)}")
            else:
                counts["skipped"] += 1
        except Exception as e:
            counts["errors"] += 1
            logger.error(f"Error filling fields for {label}: {str(e)}")

        if item_delay:
            await asyncio.sleep(item_delay)

    logger.info(f"Fill complete: {counts}")
    return counts


async def redo_fields(store: RecordStore, classifier: GroqClassifier, field_map: FieldMap,
                      labels: Sequence[str], guidance: str = "",
                      item_delay: float = 0.0) -> Dict[str, int]:
    """
    Regenerate the named columns for every record, overwriting current values.

    Args:
        labels: Column labels or canonical field names
        guidance: Free-text instruction passed to the model

    Returns:
        Counters: records updated, skipped and failed
    """
    fields = resolve_field_labels(labels, field_map)
    logger.info(f"Redoing {', '.join(fields)}" + (f" with guidance: {guidance}" if guidance else ""))
    counts = {"updated": 0, "skipped": 0, "errors": 0}

    for record in await store.read_all_records():
        label = record.name or record.email or f"row {record.row_index}"
        try:
            result = await classifier.redo_fields(record, fields, guidance)
            updates = {field_name: value for field_name, value in result.items() if field_name in fields}
            if updates:
                await store.update_record(record.row_index, updates)
                counts["updated"] += 1
                logger.info(f"Updated {label}: {', '.join(updates)}")
            else:
                counts["skipped"] += 1
        except Exception as e:
            counts["errors"] += 1
            logger.error(f"Error redoing fields for {label}: {str(e)}")

        if item_delay:
            await asyncio.sleep(item_delay)

    logger.info(f"Redo complete: {counts}")
    return counts
