# -*- coding: utf-8 -*-
# -----------------------------------------------------------------------------
# log.py - Shared logger for the K1 timer server
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

import logging
import logging.handlers
import time

import K1Global

LOG_FILE_NAME = 'k1timer.log'

logger: logging.Logger = None    # Set in app.py after init_logging()


def init_logging() -> logging.Logger:
    """Create the logger shared by the whole server.

    Log records go to a rotating file with UTC timestamps. Console output
    is added only when the [logging] log_to_stdout option is set.

    Returns:
        The configured root logger
    """
    server_cfg = K1Global.get_serverconfig()

    logger = logging.getLogger()
    logger.setLevel(server_cfg.log_level)
    formatter = logging.Formatter(
        '%(asctime)s.%(msecs)03d %(levelname)s [%(threadName)s] %(message)s',
        '%Y-%m-%dT%H:%M:%S'
    )
    formatter.converter = time.gmtime

    handler = logging.handlers.RotatingFileHandler(
        LOG_FILE_NAME,
        mode='w',
        delay=True,
        maxBytes=server_cfg.max_size_mb * 1000000,
        backupCount=server_cfg.num_keep_logs
    )
    handler.setLevel(server_cfg.log_level)
    handler.setFormatter(formatter)
    handler.doRollover()
    logger.addHandler(handler)

    if server_cfg.log_to_stdout:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

    return logger
