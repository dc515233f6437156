"""REST API module for RackUp OBS."""

from rackup_obs.api.routes import create_api_blueprint
from rackup_obs.api.server import APIServer

__all__ = ["create_api_blueprint", "APIServer"]
