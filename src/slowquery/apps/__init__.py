"""Applications shipped with slowquery as examples."""
