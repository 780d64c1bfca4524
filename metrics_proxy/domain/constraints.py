MAX_QUERY_LENGTH = 8192
MAX_METRIC_NAME_LENGTH = 256
DEFAULT_MAX_POINTS = 11000
DEFAULT_RANGE_SECONDS = 3600
SUMMARY_SAMPLE_LIMIT = 10
