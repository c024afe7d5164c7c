"""Kernel services (write side, flush-only)."""

from intake_kernel.services.base import BaseService
from intake_kernel.services.numbering_service import (
    DocumentNumberService,
    format_document_number,
)

__all__ = [
    "BaseService",
    "DocumentNumberService",
    "format_document_number",
]
