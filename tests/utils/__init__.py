"""
Test Utilities
==============

Engine fakes and mock clients shared by unit and integration tests.
"""

from .mocks import *
