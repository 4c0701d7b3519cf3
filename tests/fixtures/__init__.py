"""
GrantMatch Test Fixtures Package
Reusable factories for matching models and database rows.
"""

from .factories import *
