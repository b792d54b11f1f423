# src/ingestion/__init__.py - v1
