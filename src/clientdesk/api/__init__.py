"""HTTP API of the ClientDesk service."""
