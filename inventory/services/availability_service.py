from typing import Dict, Any, Iterable, List

from inventory.models import StockRecord
from inventory.services.base_service import ValidationError, to_id
from inventory.services.record_service import StockRecordService, channel_buffers_of


def per_record_available(record: StockRecord, channel: str) -> int:
    """
    Units of ``record`` the given channel may sell.

    Other channels' buffers are held back, the channel's own buffer is added
    back, safety stock is withheld from everyone. Never negative.
    """
    buffers = channel_buffers_of(record)
    others = sum(qty for ch, qty in buffers.items() if ch != channel)
    own = buffers.get(channel, 0)
    return max(0, record.available - record.safety_stock - others + own)


def total_available(records: Iterable[StockRecord], channel: str) -> int:
    # clamped per record so one location's deficit cannot cancel another's surplus
    return sum(per_record_available(record, channel) for record in records)


class ChannelAvailabilityService:

    @classmethod
    def get_available(cls, ctx, variant_id: int, channel: str, location_id: int = None) -> int:
        variant_id = to_id(variant_id, "variant_id")
        if not channel:
            raise ValidationError("Channel is required", "channel")

        if location_id is not None:
            location_id = to_id(location_id, "location_id")
        records = StockRecordService.list_for_variant(ctx, variant_id, location_id)
        return total_available(records, channel)

    @classmethod
    def breakdown(cls, ctx, variant_id: int, channel: str) -> Dict[str, Any]:
        variant_id = to_id(variant_id, "variant_id")
        if not channel:
            raise ValidationError("Channel is required", "channel")

        records = StockRecordService.list_for_variant(ctx, variant_id)
        locations: List[Dict[str, Any]] = []
        for record in records:
            locations.append({
                **StockRecordService.serialize(record),
                "channel_available": per_record_available(record, channel),
            })

        return {
            "variant_id": variant_id,
            "channel": channel,
            "total_available": sum(loc["channel_available"] for loc in locations),
            "locations": locations,
        }
