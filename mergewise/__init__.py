"""Pull request analysis worker for GitHub App installations."""

__version__ = "0.1.0"
