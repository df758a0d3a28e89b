"""HTTP routes of the ops API (health, sync runs, explanations)."""
