"""
MES Production Kernel

The transactional core of a manufacturing execution system:
- Production confirmation with partial confirmations
- Batch split, merge, quantity adjustment and genealogy
- Batch-to-order-line allocation
- Configuration-driven, collision-free batch numbering
"""

__version__ = "0.1.0"
