# -*- coding: utf-8 -*-
"""
The fixture system and its persistent settings.

- `FixtureSystem`: the two links, their shared reading store and GPIO
  correlator, port scanning and the single active workflow
- `mock_system`: the same system on a simulated board
- `ThresholdSettings`: thresholds stored as JSON between runs

Examples
--------
```python
from fixturetest.system import mock_system
system = mock_system()
state = await system.run_workflow(asyncio.Queue())
print(system.last_result.passed)
```

See Also
--------
fixturetest.device : Link implementations
fixturetest.meas.workflow : The test workflow
"""

from .settings import ThresholdSettings
from .system import FixtureSystem, mock_system

__all__ = [
    "FixtureSystem",
    "ThresholdSettings",
    "mock_system",
]
