"""Services for notegraph."""
