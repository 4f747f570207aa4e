"""Book lending module.

Provides functionality for:
- Copy bookkeeping (inventory ledger)
- Loan record lifecycle
- Borrow/return transactions
- Overdue derivation
"""

from .ledger import InventoryLedger
from .manager import LendingManager
from .models import LOAN_PERIOD, LoanRecord, derive_status
from .schemas import (
    LedgerDiscrepancy,
    LendingStats,
    LoanDetails,
    LoanRecordResponse,
    LoanStatus,
    OverdueReport,
)
from .store import LoanRecordStore

__all__ = [
    "LendingManager",
    "InventoryLedger",
    "LoanRecordStore",
    "LoanRecord",
    "LOAN_PERIOD",
    "derive_status",
    "LoanStatus",
    "LoanRecordResponse",
    "LoanDetails",
    "LendingStats",
    "OverdueReport",
    "LedgerDiscrepancy",
]
