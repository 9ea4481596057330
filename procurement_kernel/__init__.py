"""
Procurement Kernel

Purchase-order receiving, costing and recovery core:
- Fixed-table purchase-order workflow with role and amount limits
- Tolerance-based receiving reconciliation
- Weighted-average inventory costing
- Balanced double-entry posting of valuation changes
- Taxonomy-driven failure recovery with bounded retries
"""

__version__ = "0.1.0"
