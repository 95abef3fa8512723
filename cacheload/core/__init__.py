"""
Core load generation: scheduling, workload, metrics and thresholds.
"""
