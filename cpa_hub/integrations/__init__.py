"""External service clients (GoTo Connect, Microsoft Graph, Google Calendar)."""
