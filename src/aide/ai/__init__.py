"""Provider adapters, tools, embeddings, and chat orchestration."""
