"""Behavior analysis package.

This package provides:
- Rule-based classification of a single pose into behavior labels
- Aggregation of per-cycle labels into a history log or a running summary
- The fixed-rate detection loop that drives both

Perception providers are pluggable; see `providers`.
"""

from __future__ import annotations
