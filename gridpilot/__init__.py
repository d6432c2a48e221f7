# gridpilot/__init__.py
"""Microgrid decision-pipeline sandbox: simulate, decide, validate, report."""

__version__ = "0.1.0"
