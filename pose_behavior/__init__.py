"""Pose-based behavior monitoring.

Turns single-person keypoint estimates into discrete behavior labels and
aggregates them over time into a bounded history log or a running summary.
"""
