"""Routing — ranked route table with trie-based candidate lookup.

Routes are registered during setup and compiled into an immutable
lookup structure when the app freezes.
"""
