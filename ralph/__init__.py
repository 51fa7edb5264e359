"""ralph - turn a free-text description into an epic specification."""

__version__ = "0.1.0"
