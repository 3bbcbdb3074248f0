"""
Exceptions raised by the analytics engine.
"""


class AnalyticsError(Exception):
    """Base exception for the analytics package."""

    kind = "analytics_error"


class UpstreamQueryFailure(AnalyticsError):
    """A data source query failed; the aggregation depending on it is aborted."""

    kind = "upstream_query_failure"

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class DecodeFailure(AnalyticsError):
    """A row returned by the data source does not match its record type."""

    kind = "decode_failure"

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class DataSourceUnavailable(AnalyticsError):
    """No data source is configured for this deployment."""

    kind = "data_source_unavailable"


class UnknownDimension(AnalyticsError):
    """Ranking dimension is not registered."""

    kind = "unknown_dimension"
