"""StockWise: local inventory record store with session management."""

__version__ = '1.0.0'
