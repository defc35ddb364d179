"""Configuration for the rendition worker."""
