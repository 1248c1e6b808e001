"""Importers turning flat rows, bank statements and extraction results into ledger transactions."""

from importers.batch import BatchImporter, BatchImportRequest, BatchImportResponse, FlatTransactionRow

__all__ = ["BatchImportRequest", "BatchImportResponse", "BatchImporter", "FlatTransactionRow"]
