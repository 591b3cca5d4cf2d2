"""Routing rule types, parsing, suffix trie and matching."""