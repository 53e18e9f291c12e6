"""REST API for SmartDCA.

Provides HTTP endpoints for backtests, parameter sweeps, DCA health
and purchase history.
"""

from smartdca.api.server import create_app, start_api_server, stop_api_server

__all__ = [
    "create_app",
    "start_api_server",
    "stop_api_server",
]
