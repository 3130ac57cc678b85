"""HTTP API for deposits, status polling and operator actions."""
