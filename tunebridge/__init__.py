"""TuneBridge - playlist transfer engine for music streaming services."""

__version__ = "0.3.0"
