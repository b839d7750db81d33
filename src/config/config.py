import os


class Config:
    """
    Process-level settings taken from environment variables.
    Monitoring settings live in the YAML files under CONFIG_DIR.
    """

    CONFIG_DIR = os.environ.get("TRACEKEY_CONFIG_DIR", "config")
    BASE_SETTINGS_FILE = os.environ.get("TRACEKEY_BASE_SETTINGS", "base.yaml")
    LOCAL_SETTINGS_FILE = os.environ.get("TRACEKEY_LOCAL_SETTINGS", "local.yaml")

    # 0 disables the Prometheus endpoint
    METRICS_PORT = int(os.environ.get("METRICS_PORT", "0"))

    # Seconds an in-flight probe may keep running after shutdown was requested,
    # used when the settings file does not override it
    SHUTDOWN_GRACE_SECONDS = float(os.environ.get("SHUTDOWN_GRACE_SECONDS", "5"))
