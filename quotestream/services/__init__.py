"""Business logic services for the quotestream collector."""
