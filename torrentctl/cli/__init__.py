"""Terminal interface: key input, commands, rendering and the entry point."""
