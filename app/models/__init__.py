from app.models.history import HistoryBlob

__all__ = ["HistoryBlob"]
