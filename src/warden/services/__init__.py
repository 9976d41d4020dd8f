"""Runtime services shared across the bot."""
