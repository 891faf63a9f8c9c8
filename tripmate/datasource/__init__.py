"""
Provider data sources and the ExternalApiService facade.
"""

from tripmate.datasource.facade import ExternalApiService

__all__ = ["ExternalApiService"]
