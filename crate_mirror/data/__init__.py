"""
Access to the authoritative crates.io index.

This package is responsible for:
* Locating the index checkout (explicit path or cargo's registry cache).
* Reading every crate file into an in-memory IndexSnapshot.
* Choosing each crate's highest version.
"""
