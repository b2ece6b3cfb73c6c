"""Terminal dashboard for grouprelay."""
