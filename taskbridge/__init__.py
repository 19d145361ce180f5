"""Discord thread <-> remote agent session bridge."""

__version__ = "0.1.0"
