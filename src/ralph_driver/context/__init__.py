"""Budget-aware working-context assembly for agent runs."""
