"""NPT report approval and monthly lifecycle workflow."""

__version__ = "1.0.0"
