"""Turn bank alert emails into categorized, deduplicated transactions."""
