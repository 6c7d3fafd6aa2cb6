"""
Bizflow - Workflow Automation Engine

Matches tenant business events against workflow definitions, evaluates
conditions and runs ordered action pipelines.
"""

__version__ = "0.1.0"
