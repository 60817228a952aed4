from reconciliation.loaders.stock_loader import StockLoader

__all__ = ["StockLoader"]
