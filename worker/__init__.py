"""
Worker module for Fleetbuild distributed builds.

Code that runs on the nodes themselves:
- Progress sentinel parsing
- Progress reporting back to the coordinator
- Reference unit runner
"""

__version__ = "0.1.0"
