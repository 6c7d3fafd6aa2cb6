"""Bizflow execution: context, delay continuations and history."""
