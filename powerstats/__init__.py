"""
powerstats: multi-resolution power telemetry rollups.

Folds per-location power and battery-charge readings into five-minute and
daily aggregate buckets and serves instant views, bucket histories and
chart-ready series from them.
"""

__version__ = "0.1.0"
