"""HTTP interface of the coordinator."""

from calcgrid.api.server import create_app

__all__ = ["create_app"]
