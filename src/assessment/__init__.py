"""Assessment lifecycle engine.

Grades exam assignments, drives the makeup-exam workflow, keeps the
wrong-question ledger and runs deadline reminder sweeps.
"""

__version__ = "0.1.0"
