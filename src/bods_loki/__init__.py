"""BODS SIRI-VM to Grafana Loki bus tracking pipeline."""

__version__ = "1.0.0"
