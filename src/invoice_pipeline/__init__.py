"""Email-to-invoice extraction pipeline."""
