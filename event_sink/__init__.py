"""
Event Sink Package - Formatting and delivery of TWB and action records.
"""

from .delivery import ApiDelivery, Delivery, StdoutDelivery
from .formatters import (
    RecordContext,
    format_action,
    format_records,
    format_window,
    make_event_id,
)
from .sink import EventSink

__all__ = [
    "ApiDelivery",
    "Delivery",
    "EventSink",
    "RecordContext",
    "StdoutDelivery",
    "format_action",
    "format_records",
    "format_window",
    "make_event_id",
]
