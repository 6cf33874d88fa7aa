"""Product-name similarity, catalog matching and quantity-tiered pricing."""
