"""Transaction core: transfer intents, the chain SDK seam and the lifecycle controller."""
