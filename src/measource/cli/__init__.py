"""
Command-line interface for measource.

Examples
--------
Serving a HiDens source:
```bash
$ measource serve -t hidens -l 11.0.0.1
```

Querying it from another shell:
```bash
$ measource status
$ measource get sample-rate
```

CLI Tree
--------

```
$ measource --tree
cli
└── get
└── serve
└── shutdown
└── status
```
"""

from .base import cli, tree_option

__all__ = ["cli", "tree_option"]
