"""Shared primitives: errors, logging, settings, time, SQL plumbing and models."""
