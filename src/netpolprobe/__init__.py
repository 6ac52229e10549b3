"""netpolprobe — predict and verify Kubernetes network policy connectivity."""

__version__ = "0.1.0"
