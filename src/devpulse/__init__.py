"""Local activity monitor that records which app, file and project you work in."""

__version__ = "0.3.0"
