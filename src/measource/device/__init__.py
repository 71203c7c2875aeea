"""
Data source implementations.

- `BaseSource`: lifecycle contract, states and request handling
- `HidensSource`: client of the HiDens network sample server
- `FileSource`: playback of recorded acquisitions

Examples
--------
```python
from measource.device import create_source
source = create_source("hidens", "11.0.0.1", read_interval=10)
reply = await source.initialize()
```

See Also
--------
measource.server : Exposes one source to remote controllers
"""

from .factory import (
    SOURCE_TYPES,
    UNSUPPORTED_TYPES,
    create_source,
    register_source_type,
)
from .file_source import FileSource
from .hidens import HidensSource
from .source import BASE_GETTABLE, SOURCE_STATE, BaseSource

__all__ = [
    "BaseSource",
    "SOURCE_STATE",
    "BASE_GETTABLE",
    "HidensSource",
    "FileSource",
    "SOURCE_TYPES",
    "UNSUPPORTED_TYPES",
    "create_source",
    "register_source_type",
]
