from showbook.schemas.show import (
    ShowCreate, ShowBatchCreate, ShowSummary, ShowResponse, ShowBatchResponse, ShowListResponse,
    MovieScheduleResponse,
)
from showbook.schemas.booking import BookingCreate, BookingResponse, OccupiedSeatsResponse, WebhookAck

__all__ = [
    "ShowCreate", "ShowBatchCreate", "ShowSummary", "ShowResponse", "ShowBatchResponse",
    "ShowListResponse", "MovieScheduleResponse",
    "BookingCreate", "BookingResponse", "OccupiedSeatsResponse", "WebhookAck",
]
