"""Configuration editor for the thinkfan fan-control daemon."""

__version__ = "0.3.0"
