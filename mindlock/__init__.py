"""MindLock purchase validation and donation reporting backend."""
