"""Content reports filed by users, reviewed from the admin back office."""
