"""Connection and transaction monitoring for the KeyPass SDK networks."""

__version__ = "0.1.0"
