# src/backup/__init__.py - v1
