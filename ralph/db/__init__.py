"""SQLite storage for epics and the in-progress draft."""
