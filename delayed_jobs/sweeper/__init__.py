"""
Sweeper module.
Contains the periodic sweep that re-dispatches eligible jobs.
"""

from delayed_jobs.sweeper.main import Sweeper

__all__ = ["Sweeper"]
