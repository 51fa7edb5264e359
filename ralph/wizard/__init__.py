"""Epic creation wizard: step machine, stream reducer, draft autosave."""
