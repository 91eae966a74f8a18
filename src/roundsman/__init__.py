"""roundsman - round-robin orchestrator for coding-agent sessions.

Discovers project directories marked with ``roundsman.json`` and rotates
an interactive prompt through them, one agent turn at a time, while turns,
watchers and hooks run in the background.
"""

__version__ = "0.4.0"
