"""HTTP control surface and action dispatch."""
