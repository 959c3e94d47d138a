"""Bulk file ingestion for collection notice runs.

Chunked uploads are reassembled and validated, workbooks are converted to CSV,
rows are sanitized per data source and loaded into PostgreSQL staging tables.
"""

__version__ = "0.1.0"
