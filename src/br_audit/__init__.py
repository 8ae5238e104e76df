"""
br_audit — CA/Browser Forum Baseline Requirements audit of a CT log.

Reads Certificate Transparency log entries, checks every certificate
against six BR rules, scores each issuer per calendar month (raw and
weighted by domain popularity) and stores the resulting report.

Built on the Railway-Oriented Programming (ROP) helpers in
br_audit.railway for explicit, composable error handling.
"""

__version__ = "0.1.0"
