"""Customer email notifications."""
