"""PostgreSQL persistence for products and sync runs."""
