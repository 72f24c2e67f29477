"""Aggregate model imports so Base.metadata sees every table."""

from app.models.work_center import ShiftConfig, WorkCenter  # noqa: F401
from app.models.user import User, UserRole  # noqa: F401

# Catalog (read-only collaborators)
from app.models.item import Item, ItemPacking  # noqa: F401
from app.models.package_size import PackageSize  # noqa: F401
from app.models.order import Order  # noqa: F401

# Picker work
from app.models.picker_task import PickerTask  # noqa: F401
