#!/usr/bin/env python3
"""
Test suite for the CRM notification dispatch pipeline.

All unit tests run without PostgreSQL or Redis:

    python -m pytest tests/ -v

    # Skip anything that needs a live database
    python -m pytest tests/ -v -m "not db"
"""
