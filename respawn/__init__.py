"""
Respawn - run a file and restart it whenever files next to it change.

Provides a supervisor loop that turns debounced filesystem change batches
into strictly sequential close -> respawn cycles of a single child process.
"""

__version__ = "0.1.0"
