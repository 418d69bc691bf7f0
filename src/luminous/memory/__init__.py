"""Conversation storage for Luminous."""

from luminous.memory.store import BlobStore, ConversationStore, FileBlobStore, InMemoryBlobStore, Profile

__all__ = ["BlobStore", "ConversationStore", "FileBlobStore", "InMemoryBlobStore", "Profile"]
