"""Console connector."""
