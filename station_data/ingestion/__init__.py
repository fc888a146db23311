"""Import and download pipelines for station data sets"""
