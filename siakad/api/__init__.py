"""
API module exposing the platform over HTTP.
"""

from .rest_api import SiakadRestAPI

__all__ = [
    "SiakadRestAPI",
]
