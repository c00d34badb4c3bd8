"""OpenSearch index management, queries and hybrid ranking."""
