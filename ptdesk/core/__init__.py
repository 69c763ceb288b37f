"""Database-free business rules shared by the web app and the CLI."""
