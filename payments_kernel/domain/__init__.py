"""Pure domain primitives: clocks and workflow definitions."""
