"""Receipt Filer: files PDF e-receipts from Gmail into a dated folder tree."""

__version__ = "1.0.0"
