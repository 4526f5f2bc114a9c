"""Workspace services: batch executor, cache, mapper, session and bulk jobs."""
