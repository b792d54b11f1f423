# src/analytics/__init__.py - v1
