"""Retrieval-augmented generation: LiteLLM client, retriever, fallback."""
