from enum import Enum
from typing import Iterable, List


class PermissionCode(str, Enum):
    # Loans
    LOAN_APPLY = "loan.apply"
    LOAN_VIEW_OWN = "loan.view_own"
    LOAN_VIEW_ALL = "loan.view_all"
    LOAN_MANAGE_ALL = "loan.manage_all"
    LOAN_TOP_UP = "loan.top_up"
    LOAN_LIQUIDATE = "loan.liquidate"
    LOAN_STATUS_MANAGE = "loan.status.manage"
    LOAN_TERMS_MANAGE = "loan.terms.manage"
    LOAN_REPORT_VIEW = "loan.report.view"

    # Payments
    PAYMENT_RECORD = "payment.record"
    PAYMENT_VIEW_OWN = "payment.view_own"
    PAYMENT_VIEW_ALL = "payment.view_all"

    # Roles / users
    ROLE_VIEW = "role.view"
    ROLE_MANAGE = "role.manage"
    USER_VIEW_ALL = "user.view_all"
    USER_MANAGE = "user.manage"

    # Support
    SUPPORT_USE = "support.use"
    SUPPORT_MANAGE = "support.manage"

    @classmethod
    def list_all(cls) -> List[str]:
        return [code.value for code in cls]

    @classmethod
    def normalize(cls, values: Iterable[str]) -> List[str]:
        """Return unique permission codes that are valid members."""
        seen = set()
        normalized: list[str] = []
        for value in values:
            try:
                code = cls(value)
            except ValueError:
                continue
            if code.value not in seen:
                seen.add(code.value)
                normalized.append(code.value)
        return normalized

    @classmethod
    def unknown(cls, values: Iterable[str]) -> List[str]:
        known = set(cls.list_all())
        return [value for value in values if value not in known]


ADMIN_ROLE = "ADMIN"
CUSTOMER_ROLE = "CUSTOMER"
SUPPORT_ROLE = "SUPPORT"

SYSTEM_ROLE_DEFINITIONS = {
    ADMIN_ROLE: {
        "description": "Full administrative access",
        "permissions": PermissionCode.list_all(),
    },
    CUSTOMER_ROLE: {
        "description": "Borrower self-service access",
        "permissions": PermissionCode.normalize(
            [
                PermissionCode.LOAN_APPLY,
                PermissionCode.LOAN_VIEW_OWN,
                PermissionCode.LOAN_TOP_UP,
                PermissionCode.LOAN_LIQUIDATE,
                PermissionCode.PAYMENT_RECORD,
                PermissionCode.PAYMENT_VIEW_OWN,
                PermissionCode.SUPPORT_USE,
            ]
        ),
    },
    SUPPORT_ROLE: {
        "description": "Customer support agent",
        "permissions": PermissionCode.normalize(
            [
                PermissionCode.LOAN_VIEW_ALL,
                PermissionCode.PAYMENT_VIEW_ALL,
                PermissionCode.USER_VIEW_ALL,
                PermissionCode.SUPPORT_USE,
                PermissionCode.SUPPORT_MANAGE,
            ]
        ),
    },
}
