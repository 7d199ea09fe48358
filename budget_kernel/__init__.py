"""
Budget Kernel - production budget tracking core.

A document-store backed budgeting system with:
- Line item / department / phase budget aggregation
- Approved-expense spend projection with an anonymous "Other" bucket
- Expense approval and team membership consistency modes
- Time-windowed temporary approver delegation
- Phase extension requests with derived "is extended" state
"""

__version__ = "0.1.0"
