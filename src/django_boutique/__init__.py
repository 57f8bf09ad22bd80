"""Order pricing, checkout, and payment reconciliation for a wine boutique."""
