# Core package
"""
Core modules for the exchange normalization layer.

``core.exchange`` holds the canonical data model, the order lifecycle, the
signing schemes and one adapter per supported exchange.
"""

__version__ = "0.1.0"
