"""Activity log entry kinds, shared by the services that write the trail."""

from enum import Enum


class ActivityType(Enum):
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    SESSION_CANCEL = "session_cancel"
    PAYMENT_ADD = "payment_add"
    PAYMENT_UPDATE = "payment_update"
    PROMOTION_CREATED = "promotion_created"
    PROMOTION_UPDATED = "promotion_updated"
    PROMOTION_ACTIVATED = "promotion_activated"
    PROMOTION_DISABLED = "promotion_disabled"
    PROMOTION_DELETED = "promotion_deleted"
