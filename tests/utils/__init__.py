"""
Test Utilities
==============

Common utilities and helpers for testing.
"""

from .assertions import *
from .helpers import *
from .mocks import *
