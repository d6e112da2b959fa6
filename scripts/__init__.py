"""
Scripts for the PillPulse reminder engine
Utility scripts for seeding data and running cycles by hand
"""

from .seed_data import seed_all
from .run_cycle import run

__all__ = [
    "seed_all",
    "run"
]
