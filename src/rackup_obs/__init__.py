"""
RackUp OBS - recording orchestration for the RackUp pool scorer

Drives an OBS Studio recording session from scoring events, names every
frame's recording after the match it holds, and streams live match state
to the stream overlay.
"""

__version__ = "1.0.0"
__author__ = "RackUp Team"

from rackup_obs.config import Config
from rackup_obs.app import RackupApp

__all__ = ["Config", "RackupApp", "__version__"]
