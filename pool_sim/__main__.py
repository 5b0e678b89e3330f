"""
Entry point for running pool_sim as a module.

Usage:
    python -m pool_sim single --steps 365
"""

from .cli import main

if __name__ == "__main__":
    main()
