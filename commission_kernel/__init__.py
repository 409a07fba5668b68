"""
Commission Kernel

Core of the commission calculation and audit engine:
- Precision decimal arithmetic (never float)
- Versioned, checksummed commission rules
- Typed error taxonomy
- Deterministic hashing for exports and replay
- Persistence collaborator interface with a SQLAlchemy implementation
"""

__version__ = "0.1.0"
