"""Bill validation package."""

from billbook.validation.validator import BillValidator

__all__ = ["BillValidator"]
