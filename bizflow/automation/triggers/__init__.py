"""Bizflow triggers: dispatch, schedule calculation and the scheduler."""
