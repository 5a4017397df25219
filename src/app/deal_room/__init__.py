"""Deal room module -- drafts, published versions, and conflict handling.

Multiple editing sessions work on a project's investor-facing deal room at
once. Each session autosaves into its own draft; publishing applies the draft
to the live deal room and appends an immutable version, unless another
session has published divergent data in the meantime, in which case a
conflict is recorded for explicit resolution.

Provides Pydantic schemas, the DealRoomService orchestrator, pluggable
stores (in-memory and SQLAlchemy), the autosave controller and an HTTP client.
"""
