"""Named request schemas and the single entry point that validates against them."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.core.errors import ValidationError, format_validation_errors
from app.schemas.auth import (
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SetNewPasswordRequest,
    VerifyCodeRequest,
)
from app.schemas.loan import (
    DateRangeQuery,
    LoanApplicationCreate,
    LoanStatusUpdate,
    LoanTermsUpdate,
    LoanTopUpRequest,
)
from app.schemas.payments import PaymentCreate, PaymentStatementQuery
from app.schemas.roles import RoleCreate
from app.schemas.support import ChatMessageCreate, ContactMessageCreate
from app.schemas.users import (
    ChangePasswordRequest,
    PaginationQuery,
    ProfileUpdate,
    RoleAssignment,
    SecurityUpdate,
    UserStatusUpdate,
)

SCHEMAS: dict[str, type[BaseModel]] = {
    "loan_application": LoanApplicationCreate,
    "loan_top_up": LoanTopUpRequest,
    "payment": PaymentCreate,
    "payment_statement": PaymentStatementQuery,
    "loan_status_update": LoanStatusUpdate,
    "loan_terms_update": LoanTermsUpdate,
    "date_range": DateRangeQuery,
    "pagination": PaginationQuery,
    "register": RegisterRequest,
    "login": LoginRequest,
    "verify_code": VerifyCodeRequest,
    "reset_password": ResetPasswordRequest,
    "set_new_password": SetNewPasswordRequest,
    "role_create": RoleCreate,
    "contact_message": ContactMessageCreate,
    "chat_message": ChatMessageCreate,
    "profile_update": ProfileUpdate,
    "security_update": SecurityUpdate,
    "change_password": ChangePasswordRequest,
    "user_status": UserStatusUpdate,
    "role_assignment": RoleAssignment,
}


def validate(schema: str | type[BaseModel], payload: Any) -> BaseModel:
    """Return the parsed model or raise ValidationError listing every violation."""
    if isinstance(schema, str):
        try:
            model = SCHEMAS[schema]
        except KeyError as exc:
            raise LookupError(f"Unknown schema: {schema}") from exc
    else:
        model = schema
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(format_validation_errors(exc.errors())) from exc
