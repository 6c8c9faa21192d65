"""Static page publishing."""
