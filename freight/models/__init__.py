from freight.models.truck import Truck, TruckActivity, RemovalRequest
from freight.models.booking import Booking
from freight.models.payment import Payment
from freight.models.notification import Notification

__all__ = ["Truck", "TruckActivity", "RemovalRequest", "Booking", "Payment", "Notification"]
