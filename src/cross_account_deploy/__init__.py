"""Cross-account stack deployment tooling."""
