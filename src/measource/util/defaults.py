# -*- coding: utf-8 -*-

import pathlib

DEFAULT_HOST_ADDR = "127.0.0.1"
DEFAULT_PORT = 8850
DEFAULT_RETRIES = 3  # Number of times to retry a failed req operation
DEFAULT_TIMEOUT = 5  # seconds
DEFAULT_LOGLEVEL = "INFO"
TEST_LOGLEVEL = "TRACE"
SINGLE_LINE_ERR_LOG = False  # reformat tracebacks into a single line for err comms

USER_DIR = pathlib.Path.home() / ".measource"
SOURCES_INI = USER_DIR / "sources.ini"

# HiDens network defaults
HIDENS_ADDR = "11.0.0.1"
HIDENS_PORT = 11112
FPGA_ADDR = "11.0.0.7"
FPGA_PORT = 32124
HIDENS_CLIENT_NAME = "blds"
HIDENS_REQUEST_WAIT_TIME = 0.1  # seconds, per reply
HIDENS_CONNECT_TIMEOUT = 3.0  # seconds
FPGA_CONNECT_TIMEOUT = 10.0  # seconds
FPGA_WRITE_TIMEOUT = 10.0  # seconds

DEFAULT_READ_INTERVAL = 10  # ms
