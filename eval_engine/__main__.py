"""
Entry point for running eval-engine as a module.

Usage:
    python -m eval_engine evaluate --registry evaluators.yaml --evaluator gate --output "4"
    python -m eval_engine run-suite --suite suite.yaml
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
