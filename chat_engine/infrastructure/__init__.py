"""Infrastructure layer: Redis cache, durable write queue, notification stream, metrics."""
