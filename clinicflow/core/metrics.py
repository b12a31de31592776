"""Domain metrics exported alongside the HTTP instrumentation."""

from prometheus_client import Counter

BOOKINGS = Counter(
    "clinicflow_bookings_total",
    "Slot booking attempts by outcome",
    ["outcome"],
)

STATUS_TRANSITIONS = Counter(
    "clinicflow_status_transitions_total",
    "Appointment status transitions applied",
    ["from_status", "to_status"],
)

QUEUE_OPERATIONS = Counter(
    "clinicflow_queue_operations_total",
    "Queue operations applied",
    ["action"],
)

LIVE_SESSIONS_EVICTED = Counter(
    "clinicflow_live_sessions_evicted_total",
    "Live sessions dropped because they fell behind",
)
