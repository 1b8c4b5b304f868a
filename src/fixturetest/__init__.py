# -*- coding: utf-8 -*-
"""# fixturetest

Production tester for a dual-microcontroller fixture board.

The board carries an Arduino, which reads the drain side of each output and a
few sensors over a text protocol, and an STM32, which drives the outputs and
reads their gate side over a checksum-framed binary protocol. A test run
switches every output on and off in turn, reads both links, probes neighbouring
pins for shorts, sweeps the sensors and produces a `TestReport`.

- `fixturetest.protocol`: wire formats of both links
- `fixturetest.device`: serial and simulated links
- `fixturetest.meas`: reading store, correlator, readers, classifier, workflow
- `fixturetest.system`: the fixture system and threshold settings
- `fixturetest.cli`: the `fixturetest` command
"""

from ._version import __version__
