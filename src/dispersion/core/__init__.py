"""
Dispersion Core Module

Fixed-point arithmetic, pricing, exceptions, logging and metrics.
"""

__all__ = []
