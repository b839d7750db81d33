class TracekeyError(Exception):
    """
    Base class for errors raised by tracekey.
    """


class ConfigurationError(TracekeyError):
    """
    Raised when settings are missing, malformed or contradict each other.
    Always fatal: the monitor never starts with an invalid configuration.
    """


class ReportWindowError(TracekeyError):
    """
    Raised when a report window is empty or inverted (since > until).
    """


class MonitorError(TracekeyError):
    """
    Raised when a background task of the monitor ends before shutdown was
    requested.
    """
