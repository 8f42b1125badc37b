"""Evidence extraction, classification and the review workflow services."""
