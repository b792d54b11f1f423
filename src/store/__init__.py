# src/store/__init__.py - v1
