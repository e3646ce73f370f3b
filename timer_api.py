# File: timer_api.py
"""
Falcon responders for the race timer.

Routes (all GET, JSON bodies):

    /api/race/timer/init            connect if needed, return port info
    /api/race/timer/test            {"connected": bool}
    /api/race/timer/newconnection   reconnect, return port info
    /api/race/timer/endrace         {"success": bool}
    /api/race/timer/clearrace       {"success": bool}
    /api/race/timer/results         latest results, 204 if none

``monitor`` and ``logger`` are set by app.py at startup.
"""

import logging

import falcon
from falcon import App, Request, Response

from K1Timer import DeviceCommunicationError
from track_monitor import TrackMonitor

ROUTE_PREFIX = '/api/race/timer'

monitor: TrackMonitor = None
logger: logging.Logger = logging.getLogger(__name__)


def _unavailable(ex: Exception) -> falcon.HTTPServiceUnavailable:
    logger.error(f"Timer unavailable: {ex}")
    return falcon.HTTPServiceUnavailable(title='Timer unavailable', description=str(ex))


class init:
    def on_get(self, req: Request, resp: Response) -> None:
        try:
            port_info = monitor.initialize()
        except DeviceCommunicationError as ex:
            raise _unavailable(ex) from ex
        resp.media = port_info.to_dict()


class test:
    def on_get(self, req: Request, resp: Response) -> None:
        resp.media = {'connected': monitor.test_connection()}


class newconnection:
    def on_get(self, req: Request, resp: Response) -> None:
        try:
            port_info = monitor.new_connection()
        except DeviceCommunicationError as ex:
            raise _unavailable(ex) from ex
        resp.media = port_info.to_dict()


class endrace:
    def on_get(self, req: Request, resp: Response) -> None:
        resp.media = {'success': monitor.end_race()}


class clearrace:
    def on_get(self, req: Request, resp: Response) -> None:
        resp.media = {'success': monitor.clear_race()}


class results:
    def on_get(self, req: Request, resp: Response) -> None:
        result = monitor.last_result
        if result is None:
            resp.status = falcon.HTTP_204
            return
        resp.media = result.to_dict()


def init_routes(app: App) -> None:
    """Route each responder class to ROUTE_PREFIX/<class name>."""
    for responder in (init, test, newconnection, endrace, clearrace, results):
        app.add_route(f'{ROUTE_PREFIX}/{responder.__name__}', responder())
