"""Note search: keyword and semantic scoring, history and saved searches."""
