"""
Authorio -- PySide6 desktop client for writing books.

Package layout:
    widgets/    Editor form bound to an autosave reconciler, save status label
    services/   Application services (event bus, autosave, book session)
"""
