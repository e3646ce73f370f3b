# -*- coding: utf-8 -*-
# -----------------------------------------------------------------------------
# app.py - Application module for the K1 timer server
#
# Adapted from the AlpycaDevice Alpaca skeleton/template device driver
#
# Author:   Robert B. Denny <rdenny@dc3.com> (rbd)
#
# Python Compatibility: Requires Python 3.7 or later
# GitHub: https://github.com/ASCOMInitiative/AlpycaDevice
#
# -----------------------------------------------------------------------------
# MIT License
#
# Copyright (c) 2022-2024 Bob Denny
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.
# -----------------------------------------------------------------------------

import sys
import traceback

from falcon import App, HTTPInternalServerError, Request, Response
from waitress import serve as waitress_serve

import K1Global
import log
import timer_api

server_cfg = None


def custom_excepthook(exc_type, exc_value, exc_traceback):
    """Last-chance exception handler

    Caution:
        Hook this as last-chance only after the config info
        has been initialized and the logger is set up!

    Assures that any unhandled exceptions are logged to our logfile
    instead of going to stdout. A config option provides for a full
    traceback to be logged.
    """
    # Do not print exception when user cancels the program
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    log.logger.error(f'An uncaught {exc_type.__name__} exception occurred:')
    log.logger.error(exc_value)

    if server_cfg.verbose_driver_exceptions and exc_traceback:
        format_exception = traceback.format_tb(exc_traceback)
        for line in format_exception:
            log.logger.error(repr(line))


def falcon_uncaught_exception_handler(req: Request, resp: Response, ex: BaseException, params):
    """Handle Uncaught Exceptions while in a Falcon Responder

        This catches unhandled exceptions within the Falcon responder,
        logging the info to our log file instead of it being lost to
        stdout. Then it logs and responds with a 500 Internal Server Error.

    """
    exc = sys.exc_info()
    custom_excepthook(exc[0], exc[1], exc[2])
    raise HTTPInternalServerError(title='Internal Server Error', description='Timer endpoint responder failed. See logfile.')


def create_app() -> App:
    """Build the Falcon WSGI app with every timer route."""
    falc_app = App()
    timer_api.init_routes(falc_app)
    falc_app.add_error_handler(Exception, falcon_uncaught_exception_handler)
    return falc_app


def main():
    """ Application startup"""
    global server_cfg

    server_cfg = K1Global.get_serverconfig()
    logger = log.init_logging()
    # Share this logger throughout
    log.logger = logger
    timer_api.logger = logger

    # -----------------------------
    # Last-Chance Exception Handler
    # -----------------------------
    sys.excepthook = custom_excepthook

    # The timer is opened on the first /init request, not at startup
    timer_api.monitor = K1Global.get_track_monitor(logger)

    falc_app = create_app()

    host = server_cfg.ip_address if server_cfg.ip_address else '0.0.0.0'
    port = server_cfg.port
    threads = server_cfg.threads

    logger.info(f'==STARTUP== Starting timer API server on {host}:{port} with {threads} worker threads. Time stamps are UTC.')

    try:
        waitress_serve(falc_app, host=host, port=port, threads=threads)
    finally:
        K1Global.reset_track_monitor()


if __name__ == '__main__':
    main()
