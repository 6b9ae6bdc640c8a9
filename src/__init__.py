"""
QA Dashboard Backend

Reporting backend for the QA dashboard that:
1. Queries Jira for test-case, bug and triaging statistics
2. Keeps the dashboard views warm in a Redis (or in-memory) cache
3. Serves cached views instantly to the charting frontend
"""

__version__ = "0.2.0"
