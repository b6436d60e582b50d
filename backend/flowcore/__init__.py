"""flowcore — workflow graph execution core."""

__version__ = "0.1.0"
