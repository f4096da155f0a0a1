"""Domain layer: ports, record models and the record-handling engines."""
