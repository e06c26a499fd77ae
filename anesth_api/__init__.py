"""Stock tracking API for an anesthesiology unit."""
