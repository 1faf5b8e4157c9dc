"""Client-side orchestration of large-language-model providers."""
