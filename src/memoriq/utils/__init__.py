"""Pure helpers: hashing, vector codec, similarity, scoring, prompts."""
