"""
vendwatch - vending fleet monitor

Detects silent machines, tracks cleaning schedules and manages the
resulting alarms.
"""

__version__ = "1.0.0"
