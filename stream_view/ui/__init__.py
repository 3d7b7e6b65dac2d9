"""Terminal renderer."""
