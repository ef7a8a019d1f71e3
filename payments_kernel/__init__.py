"""
Payments Kernel

Shared infrastructure for the construction payment engine:
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Transactional sequence counters
- Append-only audit enforcement
- Deterministic clocks and workflow definitions
"""

__version__ = "0.1.0"
