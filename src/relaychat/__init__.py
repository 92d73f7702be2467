"""relaychat: streaming chat relay with optional web-search augmentation."""

__version__ = "0.1.0"
