# worker/__init__.py
"""
Worker package for RosterSync background analytics sweeps.
"""

from worker.sweep_worker import SweepMetrics, run_sweep, sweep_loop

__all__ = ["SweepMetrics", "run_sweep", "sweep_loop"]
