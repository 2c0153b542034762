"""
Tests Module
============

Unit and integration tests for barsim.

Test Categories:
- unit/: One module at a time (scheduler, execution, ledger, metrics, risk,
  data, validation, run configuration, reporting)
- integration/: Complete runs through BacktestController

Author: Algo Trading Platform
License: MIT
"""
