"""
Sweeper module.
Contains the periodic wake-up of tenants with due webhook jobs.
"""

from webhook_queue.sweeper.main import Sweeper

__all__ = ["Sweeper"]
