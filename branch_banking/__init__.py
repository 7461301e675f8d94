"""
Branch Banking System

A single-branch account system with PIN authentication, lockout and
inactivity policy, limit-checked money movement using Decimal, flat-file
persistence and a hash-chained audit trail.
"""

__version__ = "1.0.0"
