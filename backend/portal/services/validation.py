"""Validation Gate: the authorization boundary for permission writes.

Checks run in a fixed order and stop at the first failure:

  1. caller is authenticated          → AuthenticationRequired
  2. caller is admin (or guest grant) → AdminRequired
  3. state id is a positive integer   → InvalidState
  4. every product id is a positive
     integer                          → InvalidProduct (lists offenders)

Exactly one trace entry is written per decision, pass or fail. A failed
decision also posts a user-visible notice. The gate is re-run inside the
mutation pipeline with a freshly resolved role, so a disabled Save button
is never the only thing standing between a caller and a write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from portal.auth.elevation import CallerContext
from portal.middleware.exceptions import PermissionErrorCode
from portal.services.notices import NoticeBoard
from portal.services.trace import LogLevel, TraceLog

MESSAGES = {
    PermissionErrorCode.AUTHENTICATION_REQUIRED: "Authentication required. Please sign in.",
    PermissionErrorCode.ADMIN_REQUIRED: "Admin access required to modify permissions.",
    PermissionErrorCode.INVALID_STATE: "Invalid state selected",
    PermissionErrorCode.INVALID_PRODUCT: "One or more invalid products selected",
}


@dataclass(frozen=True)
class ValidationOutcome:
    ok: bool
    code: PermissionErrorCode | None = None
    message: str | None = None
    invalid_products: list[Any] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.ok


def is_positive_int(value: Any) -> bool:
    # bool is an int subclass; True must not pass as product 1
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _reject(
    code: PermissionErrorCode,
    context_data: dict,
    trace: TraceLog,
    notices: NoticeBoard | None,
    invalid_products: list[Any] | None = None,
) -> ValidationOutcome:
    message = MESSAGES[code]
    data = dict(context_data)
    data["code"] = code.value
    if invalid_products is not None:
        data["invalid_products"] = invalid_products
    trace.add(LogLevel.ERROR, message, data, stage="validate")
    if notices is not None:
        notices.error(message)
    return ValidationOutcome(
        ok=False,
        code=code,
        message=message,
        invalid_products=invalid_products or [],
    )


def validate_permissions_detailed(
    state_id: Any,
    product_ids: Sequence[Any],
    context: CallerContext,
    trace: TraceLog,
    notices: NoticeBoard | None = None,
) -> ValidationOutcome:
    """Run the gate and return the full outcome."""
    context_data = {
        "state_id": state_id,
        "product_ids": list(product_ids),
        "is_authenticated": context.is_authenticated,
        "is_admin": context.is_admin,
        "grant": context.grant.as_dict() if context.grant else None,
    }

    if not context.is_authenticated:
        return _reject(PermissionErrorCode.AUTHENTICATION_REQUIRED, context_data, trace, notices)

    if not context.has_admin_rights:
        return _reject(PermissionErrorCode.ADMIN_REQUIRED, context_data, trace, notices)

    if not is_positive_int(state_id):
        return _reject(PermissionErrorCode.INVALID_STATE, context_data, trace, notices)

    invalid = [pid for pid in product_ids if not is_positive_int(pid)]
    if invalid:
        return _reject(
            PermissionErrorCode.INVALID_PRODUCT, context_data, trace, notices,
            invalid_products=invalid,
        )

    trace.add(LogLevel.SUCCESS, "Permissions validation successful", context_data, stage="validate")
    return ValidationOutcome(ok=True)


def validate_permissions(
    state_id: Any,
    product_ids: Sequence[Any],
    context: CallerContext,
    trace: TraceLog,
    notices: NoticeBoard | None = None,
) -> bool:
    return validate_permissions_detailed(state_id, product_ids, context, trace, notices).ok
