"""
Coordinator module for Fleetbuild distributed builds.

The coordinator is responsible for:
- Loading the build plan and partitioning units across nodes
- Driving one pipeline per node under the install barrier
- Progress aggregation from node reporters
- Output verification
"""

__version__ = "0.1.0"
