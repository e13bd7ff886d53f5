"""Follow-up scheduling and the periodic delivery worker."""
