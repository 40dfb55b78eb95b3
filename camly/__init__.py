"""CAMLY reward ledger and claim settlement service"""

__version__ = "1.0.0"
