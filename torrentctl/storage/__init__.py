"""On-disk state: the resume store, resume parameters and the spool directory."""
