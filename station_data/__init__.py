"""Registry, import and download of external broadcast station data sets"""

__version__ = "0.1.0"
