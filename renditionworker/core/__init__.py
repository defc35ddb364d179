"""Shared primitives: errors, logging, timers and the activation data model."""
