# -*- coding: utf-8 -*-
"""# measource

`MEA data source control`

A (python) library for driving multi-electrode-array acquisition "data sources"
(the HiDens network sample server, recorded-file playback) through a single
lifecycle contract, and for exposing a source to remote controllers over a
msgpack/ZeroMQ server.

- [Sources](device/index.html): the lifecycle contract and concrete sources.
- [Types](types/index.html): messages, electrode configurations, wire codec, config.
- [Server](server/index.html): controller-facing server and client helpers.
"""

from ._version import __version__
