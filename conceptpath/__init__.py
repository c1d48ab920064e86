"""
Concept Path Engine
Prerequisite-graph learning paths and mastery-gated unlock state for
concept → topic → course progress.
"""

__version__ = "0.1.0"
