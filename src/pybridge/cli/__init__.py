"""pybridge command-line interface."""
