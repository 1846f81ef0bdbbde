"""HTTP surface for the knowledge base pipeline."""
