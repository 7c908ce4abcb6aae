"""Infrastructure layer: transports and observability."""
