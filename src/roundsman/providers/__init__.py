"""Child process runners: the agent CLI, watchers and hooks."""
