"""Lead distribution and realtor queueing for a real-estate marketplace."""

__version__ = "1.0.0"
