"""
Core building blocks shared by the coordinator and the nodes:
unit partitioning, build configuration slicing, archiving and errors.
"""

__version__ = "0.1.0"
