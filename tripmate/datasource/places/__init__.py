"""
Google Places data sources for places and lodging.
"""

from tripmate.datasource.places.google_places import GooglePlacesSource
from tripmate.datasource.places.lodging import LodgingSource

__all__ = ["GooglePlacesSource", "LodgingSource"]
