"""Traffic-splitting reverse proxy in front of the monolith and new services."""
