# coinproxy/version.py

SERVICE_NAME = "coinproxy"
SERVICE_VERSION = "0.1.0"


def service_version_payload(upstream: str) -> dict:
    """Used by /version."""
    return {
        "service": f"{SERVICE_NAME}:{SERVICE_VERSION}",
        "service_version": SERVICE_VERSION,
        "upstream": upstream,
    }
