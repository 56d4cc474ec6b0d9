"""Profile link sync service: scheduled import of external account content."""

__version__ = "1.0.0"
