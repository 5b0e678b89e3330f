"""Simple test runner for the pool simulation suite.

Lightweight test execution without external dependencies like pytest.
Discovers and runs all test functions across test modules."""

import importlib
import inspect
import sys
import traceback
from pathlib import Path

# Ensure project root is on sys.path for module imports
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Test modules to execute (leaves first)
TEST_MODULES = [
    "tests.test_decisions",     # Probability and tier sampling functions
    "tests.test_ledger",        # Pool ledger and exit queue
    "tests.test_participants",  # Investor and manager lifecycles
    "tests.test_core",          # Step driver invariants and scenarios
    "tests.test_metrics",       # Reporting and analysis
]


def iter_tests(module):
    """Yield (name, function) for every test_ function in a module."""
    for name, obj in inspect.getmembers(module):
        if name.startswith("test_") and inspect.isfunction(obj):
            yield name, obj


def main() -> int:
    """Run all tests; returns 0 for success, 1 for failure."""
    failures = []
    total = 0

    for module_name in TEST_MODULES:
        module = importlib.import_module(module_name)

        for name, test_func in iter_tests(module):
            total += 1
            try:
                test_func()
            except Exception as exc:
                failures.append((module_name, name, exc, traceback.format_exc()))

    if failures:
        print(f"\n{len(failures)} test(s) failed out of {total}:\n", file=sys.stderr)
        for module_name, name, exc, tb in failures:
            print(f"[{module_name}] {name} FAILED: {exc}", file=sys.stderr)
            print(tb, file=sys.stderr)
        return 1

    print(f"All {total} tests passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
