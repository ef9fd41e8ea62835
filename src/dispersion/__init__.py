"""
Dispersion - supply-driven token distribution.

Deterministic fixed-point pricing and vesting accrual:
- Power-law base price with an exponential purchase-size premium
- Purchase sizing for a currency budget
- Linear post-cliff vesting with creation-ordered consumption
"""

import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
