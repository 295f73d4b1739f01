"""In-app billing orchestrator.

Drives purchases, inventory checks and consumption through a host-supplied
native billing bridge and validates purchases against the store's developer
API.
"""

__version__ = "0.1.0"
