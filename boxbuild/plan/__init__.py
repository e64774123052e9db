"""Build plan module.

This module handles:
- Step variants and the immutable BuildPlan
- Parsing box scripts, including incomplete-statement detection
- Loading scripts and structured YAML/JSON plans from files
"""

from boxbuild.plan.steps import BuildPlan, Step, StepBase

__all__ = ["BuildPlan", "Step", "StepBase"]
