"""In-app feedback widget (anonymous allowed) and its admin review."""
