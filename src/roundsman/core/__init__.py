"""Core building blocks: config, markers, prompt assembly, git, discovery."""
