"""
Shared test fixtures for the bootloader test suite.
"""

# Import fixtures so pytest can discover them
from bootloader.testing import (  # noqa: F401
    bootloader,
    boot_events,
)
