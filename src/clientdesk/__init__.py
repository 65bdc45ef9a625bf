"""ClientDesk: client chat between the admin dashboard and the client portal."""

__version__ = "0.1.0"
