# core/constants.py

# --- Activity Verbs (Standard Registry) ---

# Registration lifecycle
ACTIVITY_REGISTRATION_CREATED = "registration.created"
ACTIVITY_REGISTRATION_CANCELLED = "registration.cancelled"
ACTIVITY_REGISTRATION_STATUS_CHANGED = "registration.status_changed"
ACTIVITY_REGISTRATION_CHECKED_IN = "registration.checked_in"

# Payments
ACTIVITY_PAYMENT_INITIATED = "payment.initiated"
ACTIVITY_PAYMENT_COMPLETED = "payment.completed"
ACTIVITY_PAYMENT_FAILED = "payment.failed"

# Refunds
ACTIVITY_REFUND_REQUESTED = "refund.requested"
ACTIVITY_REFUND_COMPLETED = "refund.completed"
ACTIVITY_REFUND_REJECTED = "refund.rejected"
ACTIVITY_REFUND_FAILED = "refund.failed"

# Teams
ACTIVITY_TEAM_CREATED = "team.created"
ACTIVITY_TEAM_JOINED = "team.joined"
ACTIVITY_TEAM_LEFT = "team.left"
ACTIVITY_TEAM_MEMBER_REMOVED = "team.member_removed"
ACTIVITY_TEAM_LOCKED = "team.locked"
ACTIVITY_TEAM_UNLOCKED = "team.unlocked"
ACTIVITY_TEAM_DISBANDED = "team.disbanded"
ACTIVITY_TEAM_LEADER_CHANGED = "team.leader_changed"

# Rounds
ACTIVITY_ROUND_PROGRESSED = "round.progressed"
ACTIVITY_ROUND_STATUS_CHANGED = "round.status_changed"