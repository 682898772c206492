"""POS back office: order amendment, approval and fulfillment engine."""

__version__ = "1.0.0"
