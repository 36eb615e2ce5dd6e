"""HTTP surface for the host application."""
