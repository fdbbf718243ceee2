"""
Candlecast - Chart Capture and Next-Candle Prediction Engine

Captures periodic chart snapshots of a trading instrument for authenticated
sessions, turns each snapshot into a directional candle observation and
predicts the direction of the next candle using historical pattern matching
fused with a trend heuristic.
"""

__version__ = "0.1.0"
__author__ = "Candlecast Team"
