"""
Prediction engine.

Pattern matching over historical direction sequences fused with a trend
heuristic, plus set-once verification of emitted predictions.
"""
