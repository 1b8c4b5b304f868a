"""
Command-line interface for fixturetest.

- Running a complete fixture test, on hardware or on the simulated board
- Listing serial ports
- Viewing and editing the stored thresholds

Examples
--------
Dry run against the simulated fixture:
```bash
$ fixturetest run --mock --log-to-stdout
```

Widen the idle band of channel 3 on the Arduino:
```bash
$ fixturetest thresholds set arduino_idle.3 760,840
```

CLI Tree
--------

```
$ fixturetest --tree
cli
└── ports
└── run
└── thresholds
    └── path
    └── reset
    └── set
    └── show
```
"""

from .base import cli

__all__ = ["cli"]
