import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List

from django.db import transaction, DatabaseError

from inventory.conf import engine_setting
from inventory.models import StockMovement
from inventory.services.base_service import (
    ServiceError, ValidationError, OperationError, to_quantity, to_id
)
from inventory.services.record_service import StockRecordService

logger = logging.getLogger(__name__)


@dataclass
class BatchError:
    offset: int
    message: str
    code: str
    data: List[Any]


@dataclass
class BatchUpdateReport:
    success_count: int = 0
    failed_count: int = 0
    errors: List[BatchError] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BatchUpdateService:
    """
    Bulk quantity deltas, one transaction per chunk.

    A failing chunk is rolled back and reported; later chunks are still
    applied. There is no atomicity across chunks.
    """

    @staticmethod
    def _validate(line: Any) -> Dict[str, Any]:
        if not isinstance(line, dict):
            raise ValidationError("Each delta must be a mapping", "deltas")
        return {
            "variant_id": to_id(line.get("variant_id"), "variant_id"),
            "location_id": to_id(line.get("location_id"), "location_id"),
            "delta": to_quantity(line.get("delta"), "delta", allow_zero=True, allow_negative=True),
            "reason": line.get("reason") or StockMovement.Reason.IMPORT,
            "reference": line.get("reference") or "",
        }

    @classmethod
    def apply_deltas(cls, ctx, deltas: List[Dict[str, Any]], chunk_size: int = None) -> BatchUpdateReport:
        if chunk_size is None:
            chunk_size = engine_setting("BATCH_CHUNK_SIZE")
        if chunk_size < 1:
            raise ValidationError("Chunk size must be positive", "chunk_size")

        report = BatchUpdateReport()

        for offset in range(0, len(deltas), chunk_size):
            chunk = deltas[offset:offset + chunk_size]
            try:
                lines = [cls._validate(line) for line in chunk]
                with transaction.atomic():
                    for line in lines:
                        StockRecordService.apply_delta(ctx, **line)
            except ServiceError as e:
                cls._fail(ctx, report, offset, chunk, e.message, e.code)
                continue
            except DatabaseError as e:
                # apply_delta maps store errors itself; this covers commit failures
                logger.exception(f"[{ctx}] Batch chunk at offset {offset} failed in the store")
                error = OperationError("batch.apply_deltas", ctx, e)
                cls._fail(ctx, report, offset, chunk, error.message, error.code)
                continue

            report.success_count += len(chunk)

        logger.info(
            f"[{ctx}] Batch update: {report.success_count} applied, "
            f"{report.failed_count} failed in {len(report.errors)} chunks"
        )
        return report

    @staticmethod
    def _fail(ctx, report: BatchUpdateReport, offset: int, chunk: List[Any], message: str, code: str):
        logger.warning(f"[{ctx}] Batch chunk at offset {offset} failed: {message}")
        report.failed_count += len(chunk)
        report.errors.append(BatchError(offset=offset, message=message, code=code, data=list(chunk)))
