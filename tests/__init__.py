"""Tests package for the pool simulation.

Covers ledger accounting, exit queue ordering, decision functions, agent
lifecycles, the step driver's invariants and reporting. Tests run without
pytest through run_tests.py and are also collectable by pytest.
"""
