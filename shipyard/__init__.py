"""shipyard: provision infrastructure and roll out container releases."""

__version__ = "0.4.0"
