"""Task Portal backend: direct messaging with presence, unread counts and read receipts."""
