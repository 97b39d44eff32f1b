"""RNDC Bridge: spreadsheet rows to RNDC registry submissions, tracked as batches."""

__version__ = "1.0.0"
