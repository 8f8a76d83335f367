"""Fixed thresholds shared by the planner and its clients.

These values are part of the public contract; clients classify with the same
numbers, so they are not configurable.
"""

# Reliability classification by on-time performance (fraction of arrivals
# within the on-time band).
RELIABILITY_HIGH_THRESHOLD = 0.80
RELIABILITY_MEDIUM_THRESHOLD = 0.60

# Transfer buffer thresholds, minutes.
TRANSFER_SAFE_MINUTES = 5
TRANSFER_RISKY_MINUTES = 3

# Delay categories, minutes (positive = late).
ON_TIME_MIN_DELAY = -5.0
ON_TIME_MAX_DELAY = 5.0
MINOR_DELAY_MAX = 10.0
MAJOR_DELAY_MAX = 20.0

# Update intervals, consumed as cache TTLs.
ARRIVALS_UPDATE_INTERVAL_SEC = 30
ALERTS_UPDATE_INTERVAL_SEC = 120

# Neutral reliability for routes without history.
DEFAULT_ON_TIME_PERFORMANCE = 0.70
DEFAULT_AVERAGE_DELAY_MINUTES = 4.0

# Peak bands, inclusive local hours.
PEAK_HOUR_RANGES = ((7, 9), (16, 19))

WALKING_SPEED_M_PER_MIN = 83.4
EARTH_RADIUS_M = 6_371_000.0
SECONDS_PER_DAY = 86_400
