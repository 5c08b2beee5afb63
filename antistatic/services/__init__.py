"""Domain services behind the API routes and scheduled jobs."""
