"""mcpchat command-line interface."""
