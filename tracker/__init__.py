# Tracker: kanban projects, ordered columns and tasks, drag-and-drop reordering
#
# Components:
#   schema.py       - Data model (Project, Column, Task, Checklist, Comment, ...)
#   positions.py    - Position manager: append, remove, batch moves, drag planning
#   errors.py       - Error kinds with their HTTP status codes
#   store.py        - SQLite persistence layer
#   memory_store.py - In-memory store for demo mode, with seed data
#   client.py       - Same store methods over the HTTP API (requests)
#   board.py        - Board session: optimistic moves, revert by re-fetch, filters
#   auth.py         - API key and HTTP Basic caller resolution
#   uploads.py      - Attachment files on disk
#   config.py       - YAML + environment configuration
