"""Natural-language scheduling, drafting and multi-step workflow execution."""
