from app.models.audit_log import AuditLog
from app.models.loan import Loan
from app.models.notification import Notification
from app.models.payment import Payment
from app.models.role import Role
from app.models.support import SupportChat, SupportMessage
from app.models.user import User

__all__ = [
    "AuditLog",
    "Loan",
    "Notification",
    "Payment",
    "Role",
    "SupportChat",
    "SupportMessage",
    "User",
]
