"""Decision and risk-control loop for autonomous leveraged trading agents."""

__version__ = "1.0.0"
