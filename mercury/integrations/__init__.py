"""Remote panel integrations."""
