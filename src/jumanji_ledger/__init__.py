"""
JUMANJI LEDGER
Session billing and settlement for a board-game café.
"""

__version__ = "1.0.0"
