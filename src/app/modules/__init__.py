"""Feature modules (users, auth, email verification)."""
