"""
Intake Kernel

Foundation of the document intake pipeline:
- Typed exceptions and structured logging
- SQLAlchemy persistence for the catalog, stock ledger and documents
- Pure domain value objects for the reconciliation workflow
- Decimal-only amounts with a single rounding step
"""

__version__ = "0.1.0"
