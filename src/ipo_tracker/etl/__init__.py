"""Provider fetch step."""
