"""
docpredict - batch predictions over ingested tabular documents.

Ingests delimited text or spreadsheet documents, runs their rows through an
external classification service page by page, and reports how the predicted
values agree with the values the document already carried.
"""

__version__ = "0.1.0"
