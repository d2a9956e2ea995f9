"""
Target side: runs inside the launched process and reports outcomes.
"""

from .runner import BenchmarkRunner, TargetRunner, UnitTestRunner

__all__ = ["TargetRunner", "UnitTestRunner", "BenchmarkRunner"]
