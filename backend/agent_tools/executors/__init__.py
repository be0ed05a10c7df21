"""Tool handlers, grouped by the entity they read or change."""
