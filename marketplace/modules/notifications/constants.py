"""Notification types and real-time event names shared across modules."""

NOTIFICATION_TYPE_DISPUTE = "dispute"

EVENT_NOTIFICATION_NEW = "notification:new"
EVENT_DISPUTE_MESSAGE = "dispute:message"
EVENT_DISPUTE_UPDATED = "dispute:updated"
