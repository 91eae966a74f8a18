"""Interactive layer: terminal rendering, commands and the prompt loop."""
