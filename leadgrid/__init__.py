"""leadgrid: workspace grid engine for people / company lead tables."""

__version__ = "0.1.0"
