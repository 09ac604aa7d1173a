"""
Awaitable entry points for callers running on an event loop.

Each wraps the synchronous operation with ``sync_to_async`` so the ORM work
and its transaction stay on one thread.
"""
from asgiref.sync import sync_to_async

from inventory.services.availability_service import ChannelAvailabilityService
from inventory.services.batch_service import BatchUpdateService
from inventory.services.record_service import StockRecordService
from inventory.services.reservation_service import ReservationService
from inventory.services.transfer_service import TransferService

get_available = sync_to_async(ChannelAvailabilityService.get_available)
reserve = sync_to_async(ReservationService.reserve)
release_by_ids = sync_to_async(ReservationService.release_by_ids)
release_by_order = sync_to_async(ReservationService.release_by_order)
set_level = sync_to_async(StockRecordService.set_level)
apply_deltas = sync_to_async(BatchUpdateService.apply_deltas)
create_transfer = sync_to_async(TransferService.create)
complete_transfer = sync_to_async(TransferService.complete)
cancel_transfer = sync_to_async(TransferService.cancel)
