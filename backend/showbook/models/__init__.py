from showbook.models.show import Show
from showbook.models.booking import Booking, BookingStatus
from showbook.models.expiry_task import ExpiryTask, ExpiryState, ExpiryOutcome

__all__ = ["Show", "Booking", "BookingStatus", "ExpiryTask", "ExpiryState", "ExpiryOutcome"]
