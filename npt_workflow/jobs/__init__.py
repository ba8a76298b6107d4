"""
Background Jobs for the NPT workflow.

This module contains scheduled jobs:
- sla_sweep: Hourly over-SLA and stall checks for period reports
"""

from .sla_sweep import run_sla_sweep

__all__ = ["run_sla_sweep"]
