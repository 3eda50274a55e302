"""HTTP surface (Flask) over the relpop document service."""
