"""Aggregate model imports for Alembic auto-detection."""

from portal.models.catalog import Brand, Product, State  # noqa: F401
from portal.models.state_allowed_product import StateAllowedProduct  # noqa: F401
from portal.models.user_role import AppRole, UserRole  # noqa: F401
from portal.models.activity_log import ActivityLog  # noqa: F401
